from __future__ import annotations

import io
import json
import tempfile
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path
from unittest import mock

from fakes import RecordingEngine, RecordingOptimizer

from d2embed import cli

DOCUMENT = '<html><body><p>Intro</p><code class="language-d2">a -> b</code></body></html>'


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


class CLIAcceptanceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = RecordingEngine()
        self.engine_args = []

        def make_engine(*args, **kwargs):
            self.engine_args.append((args, kwargs))
            return self.engine

        patches = [
            mock.patch("d2embed.cli.D2CliEngine", make_engine),
            mock.patch("d2embed.pipeline.ScourOptimizer", RecordingOptimizer),
        ]
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)

    def run_cli(self, argv: list[str], stdin_text: str = "") -> tuple[int, str, str]:
        stdout = io.StringIO()
        stderr = io.StringIO()
        stdin = io.StringIO(stdin_text)
        with mock.patch("sys.stdout", stdout), mock.patch("sys.stderr", stderr), mock.patch("sys.stdin", stdin):
            code = cli.main(argv)
        return code, stdout.getvalue(), stderr.getvalue()

    def test_requires_subcommand(self) -> None:
        code, _out, err = self.run_cli([])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)
        self.assertIn("subcommand", err)

    def test_render_file_writes_sibling_output(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "page.html"
            src.write_text(DOCUMENT)
            code, out, err = self.run_cli(["render", str(src)])
            self.assertEqual(code, 0, err)
            target = Path(td) / "page.rendered.html"
            self.assertTrue(target.exists())
            self.assertIn("Wrote", out)
            body = ET.fromstring(target.read_text()).find("body")
            self.assertEqual([_local(child.tag) for child in body], ["p", "svg"])
            self.assertEqual(body[1].get("aria-label"), "a -> b")

    def test_render_text_to_stdout_with_themes(self) -> None:
        code, out, err = self.run_cli(["render", "--text", DOCUMENT, "--stdout", "--themes", "light,dark"])
        self.assertEqual(code, 0, err)
        body = ET.fromstring(out).find("body")
        self.assertEqual([child.get("data-theme") for child in body[1:]], ["light", "dark"])

    def test_render_from_stdin_png_strategy(self) -> None:
        code, out, err = self.run_cli(["render", "--strategy", "inline-png"], stdin_text=DOCUMENT)
        self.assertEqual(code, 0, err)
        img = ET.fromstring(out).find("body/img")
        self.assertTrue(img.get("src").startswith("data:image/svg+xml,"))

    def test_engine_options_are_forwarded(self) -> None:
        code, _out, err = self.run_cli(
            ["render", "--text", DOCUMENT, "--stdout", "--d2-path", "/opt/d2", "--timeout", "5"]
        )
        self.assertEqual(code, 0, err)
        self.assertEqual(self.engine_args, [(("/opt/d2",), {"timeout": 5.0})])

    def test_stdout_and_output_conflict(self) -> None:
        code, _out, err = self.run_cli(["render", "--text", DOCUMENT, "--stdout", "-o", "x.html"])
        self.assertEqual(code, 2)
        self.assertIn("mutually exclusive", err)

    def test_malformed_document(self) -> None:
        code, _out, err = self.run_cli(["render", "--text", "<html><body></html>", "--stdout"])
        self.assertEqual(code, 2)
        self.assertIn("E_PARSE_XML", err)

    def test_missing_import_dir_json_error(self) -> None:
        doc = '<div><code class="language-d2">...@vars\na -> b</code></div>'
        code, _out, err = self.run_cli(["--error-format", "json", "render", "--text", doc, "--stdout"])
        self.assertEqual(code, 3)
        payload = json.loads(err.strip().splitlines()[-1])
        self.assertFalse(payload["ok"])
        self.assertEqual(payload["code"], "E_IMPORT_DIR_MISSING")
        self.assertIn("--import-dir", payload["hint"])
        self.assertEqual(self.engine.calls, 0)

    def test_import_dir_flag(self) -> None:
        doc = '<div><code class="language-d2">...@vars\na -> b</code></div>'
        with tempfile.TemporaryDirectory() as td:
            (Path(td) / "vars.d2").write_text("vars: {}")
            code, _out, err = self.run_cli(["render", "--text", doc, "--stdout", "--import-dir", td])
        self.assertEqual(code, 0, err)
        bundle, _options = self.engine.compiled[0]
        self.assertIn("vars.d2", bundle.files)

    def test_config_file_global_import_validation(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            imports = Path(td) / "imports"
            imports.mkdir()
            (imports / "vars.d2").write_text("vars: {}")
            config = Path(td) / "d2embed.json"
            config.write_text(
                json.dumps({"import_dir": str(imports), "global_imports": {"dark": ["palette.d2"]}})
            )
            code, _out, err = self.run_cli(["render", "--text", DOCUMENT, "--stdout", "--config", str(config)])
        self.assertEqual(code, 3)
        self.assertIn("error[E_IMPORT]", err)
        self.assertIn("palette.d2", err)
        self.assertIn("vars.d2", err)

    def test_invalid_config_json(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            config = Path(td) / "bad.json"
            config.write_text("{not json")
            code, _out, err = self.run_cli(["render", "--text", DOCUMENT, "--stdout", "--config", str(config)])
        self.assertEqual(code, 3)
        self.assertIn("E_CONFIG", err)

    def test_structural_error(self) -> None:
        doc = '<div><code class="language-d2">a<b>b</b></code></div>'
        code, _out, err = self.run_cli(["render", "--text", doc, "--stdout"])
        self.assertEqual(code, 2)
        self.assertIn("E_STRUCTURE", err)

    def test_render_error(self) -> None:
        self.engine.fail_on = "a -> b"
        code, _out, err = self.run_cli(["render", "--text", DOCUMENT, "--stdout"])
        self.assertEqual(code, 4)
        self.assertIn("E_RENDER", err)


if __name__ == "__main__":
    unittest.main()
