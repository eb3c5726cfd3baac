from __future__ import annotations

import unittest
import xml.etree.ElementTree as ET
from urllib.parse import unquote

import fakes  # noqa: F401  (puts src/ on sys.path)

from d2embed.errors import ConfigurationError, RenderError
from d2embed.metadata import Metadata
from d2embed.optimize import ScourOptimizer
from d2embed.output import OutputBuilder, resolve_encoder, svg_data_uri

SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" viewBox="0 0 20 10">'
    '<g><use xlink:href="#shape"/><rect id="shape" width="20" height="10"/></g></svg>'
)


class InlineSvgTests(unittest.TestCase):
    def test_overlays_accessibility_and_size(self) -> None:
        meta = Metadata(title="Flow", alt="a -> b", width=300.0, height="50%")
        node = OutputBuilder("inline-svg").build(SVG, meta, "dark")
        self.assertEqual(node.tag, "svg")
        self.assertEqual(node.get("xmlns"), "http://www.w3.org/2000/svg")
        self.assertEqual(node.get("width"), "300")
        self.assertEqual(node.get("height"), "50%")
        self.assertEqual(node.get("role"), "img")
        self.assertEqual(node.get("aria-label"), "a -> b")
        self.assertEqual(node.get("title"), "Flow")
        self.assertEqual(node.get("data-theme"), "dark")

    def test_namespaces_are_stripped(self) -> None:
        node = OutputBuilder("inline-svg").build(SVG, Metadata(), None)
        self.assertEqual([child.tag for child in node.iter()], ["svg", "g", "use", "rect"])
        self.assertEqual(node.find("g/use").get("href"), "#shape")
        self.assertIsNone(node.get("data-theme"))
        self.assertIsNone(node.get("width"))

    def test_xml_namespace_attributes_stay_qualified(self) -> None:
        svg = (
            '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 20 10">'
            '<text xml:space="preserve" xml:lang="en">a  b</text></svg>'
        )
        node = OutputBuilder("inline-svg").build(svg, Metadata(), None)
        text = node.find("text")
        self.assertEqual(text.get("{http://www.w3.org/XML/1998/namespace}space"), "preserve")
        self.assertEqual(text.get("{http://www.w3.org/XML/1998/namespace}lang"), "en")
        self.assertIsNone(text.get("space"))
        self.assertIn('xml:space="preserve"', ET.tostring(node, encoding="unicode"))

    def test_malformed_svg(self) -> None:
        with self.assertRaises(RenderError):
            OutputBuilder("inline-svg").build("<svg><g></svg>", Metadata(), None)


class InlinePngTests(unittest.TestCase):
    def test_builds_image_with_data_uri(self) -> None:
        meta = Metadata(title="Flow", alt="diagram", height=120)
        node = OutputBuilder("inline-png").build(SVG, meta, "light")
        self.assertEqual(node.tag, "img")
        self.assertEqual(node.get("alt"), "diagram")
        self.assertEqual(node.get("title"), "Flow")
        self.assertEqual(node.get("height"), "120")
        self.assertIsNone(node.get("width"))
        self.assertEqual(node.get("data-theme"), "light")
        self.assertTrue(node.get("src").startswith("data:image/svg+xml,"))

    def test_custom_encoder(self) -> None:
        node = OutputBuilder("inline-png", encoder=lambda svg: "data:x," + str(len(svg))).build(SVG, Metadata(), None)
        self.assertEqual(node.get("src"), f"data:x,{len(SVG)}")


class EncoderTests(unittest.TestCase):
    def test_svg_data_uri_round_trips_content(self) -> None:
        uri = svg_data_uri('<svg a="1">\n  <text>50% &lt; 60%</text>\n</svg>')
        self.assertTrue(uri.startswith("data:image/svg+xml,"))
        self.assertNotIn('"', uri)
        self.assertNotIn("<", uri)
        payload = unquote(uri[len("data:image/svg+xml,"):])
        self.assertEqual(payload, "<svg a='1'> <text>50% &lt; 60%</text> </svg>")

    def test_unknown_encoder(self) -> None:
        self.assertIs(resolve_encoder("svg"), svg_data_uri)
        with self.assertRaises(ConfigurationError) as ctx:
            resolve_encoder("gif")
        self.assertIn("svg, png", str(ctx.exception))

    def test_invalid_strategy(self) -> None:
        with self.assertRaises(ConfigurationError):
            OutputBuilder("inline-jpeg")


class ScourOptimizerTests(unittest.TestCase):
    def test_strips_prolog_and_comments_but_keeps_ids(self) -> None:
        svg = (
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            '<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10">'
            "<!-- generated -->"
            '<rect id="keep-me" class="fill-N1" width="10" height="10"/></svg>'
        )
        optimized = ScourOptimizer().optimize(svg)
        self.assertNotIn("<?xml", optimized)
        self.assertNotIn("generated", optimized)
        self.assertIn('id="keep-me"', optimized)
        self.assertIn("<rect", optimized)


if __name__ == "__main__":
    unittest.main()
