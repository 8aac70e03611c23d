"""
Color utilities, seeded random stream and YAML config.
Run from project root: python -m pytest tests/ -v
Or: python -m unittest discover -s tests -p "test_*.py" -v
"""
import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from quiltlab import (  # noqa: E402
    SeededRandom,
    adjust_brightness,
    color_distance,
    hex_to_rgb,
    interpolate_colors,
    load_config,
    luma,
    normalize_hex,
    rgb_to_hex,
    sort_by_brightness,
)


class TestHexConversion(unittest.TestCase):

    def test_hex_to_rgb_case_insensitive(self):
        self.assertEqual(hex_to_rgb("#e63946"), (230, 57, 70))
        self.assertEqual(hex_to_rgb("#E63946"), (230, 57, 70))
        self.assertEqual(hex_to_rgb("e63946"), (230, 57, 70))

    def test_hex_to_rgb_malformed_returns_none(self):
        for bad in ["", "#", "#FFF", "#GGGGGG", "#12345", "#1234567", "#+12345", "#1_2345", None, 123]:
            self.assertIsNone(hex_to_rgb(bad), bad)

    def test_rgb_to_hex_uppercase_and_clamped(self):
        self.assertEqual(rgb_to_hex(230, 57, 70), "#E63946")
        self.assertEqual(rgb_to_hex(-20, 300, 0), "#00FF00")
        self.assertEqual(rgb_to_hex(0, 0, 0), "#000000")

    def test_normalize_hex(self):
        self.assertEqual(normalize_hex("#abcdef"), "#ABCDEF")
        self.assertIsNone(normalize_hex("not a color"))


class TestColorMath(unittest.TestCase):

    def test_interpolate_rounds_half_up(self):
        # 0 + (1 - 0) * 0.5 = 0.5 -> 1 (banker's rounding would give 0)
        self.assertEqual(interpolate_colors((0, 0, 0), (1, 3, 255), 0.5), (1, 2, 128))

    def test_interpolate_endpoints(self):
        self.assertEqual(interpolate_colors((10, 20, 30), (200, 100, 0), 0.0), (10, 20, 30))
        self.assertEqual(interpolate_colors((10, 20, 30), (200, 100, 0), 1.0), (200, 100, 0))

    def test_adjust_brightness_clamps(self):
        self.assertEqual(adjust_brightness((250, 100, 0), 1.2), (255, 120, 0))
        self.assertEqual(adjust_brightness((100, 100, 100), 0.85), (85, 85, 85))

    def test_color_distance_euclidean(self):
        self.assertEqual(color_distance((0, 0, 0), (3, 4, 0)), 5.0)
        self.assertEqual(color_distance((9, 9, 9), (9, 9, 9)), 0.0)

    def test_luma(self):
        self.assertEqual(luma("#FFFFFF"), 255.0)
        self.assertEqual(luma("#000000"), 0.0)
        self.assertAlmostEqual(luma("#FF0000"), 76.245)

    def test_sort_by_brightness_descending_and_stable(self):
        colors = ["#000000", "#FF0000", "#FFFFFF", "#00FF00"]
        self.assertEqual(sort_by_brightness(colors), ["#FFFFFF", "#00FF00", "#FF0000", "#000000"])
        # equal luma keeps input order
        self.assertEqual(sort_by_brightness(["#808080", "#000000", "#808080"]),
                         ["#808080", "#808080", "#000000"])


class TestSeededRandom(unittest.TestCase):

    def test_first_draw_matches_lcg(self):
        rng = SeededRandom(0)
        self.assertEqual(rng.random(), 1013904223 / 4294967296)
        rng = SeededRandom(12345)
        rng.random()
        self.assertEqual(rng.state, 87628868)

    def test_seed_truncated_to_32_bits(self):
        a = SeededRandom(5)
        b = SeededRandom(5 + 2 ** 32)
        self.assertEqual([a.random() for _ in range(10)], [b.random() for _ in range(10)])
        self.assertEqual(SeededRandom(-1).state, 2 ** 32 - 1)

    def test_same_seed_same_stream(self):
        a = SeededRandom(987654321)
        b = SeededRandom(987654321)
        self.assertEqual([a.random() for _ in range(50)], [b.random() for _ in range(50)])

    def test_ranges(self):
        rng = SeededRandom(42)
        for _ in range(500):
            self.assertTrue(0.0 <= rng.random() < 1.0)
            self.assertTrue(0.0 <= rng.random(6) < 6.0)
            self.assertTrue(3.0 <= rng.random(3, 8) < 8.0)
            self.assertIn(rng.floor_random(3, 8), range(3, 8))

    def test_reversed_bounds_are_swapped(self):
        a = SeededRandom(7)
        b = SeededRandom(7)
        self.assertEqual(a.random(18, 10), b.random(10, 18))


class TestConfig(unittest.TestCase):

    def test_missing_file_gives_defaults(self):
        config = load_config(Path("/nonexistent/quiltlab.yaml"))
        self.assertEqual(config["history"]["max_size"], 20)
        self.assertEqual(config["highlight"]["image"], "#E63946")
        self.assertEqual(config["export"]["size"], 450)

    def test_sections_merge_over_defaults(self):
        with tempfile.TemporaryDirectory() as d:
            path = Path(d) / "cfg.yaml"
            path.write_text("history:\n  max_size: 5\nexport:\n  prefix: mine\n", encoding="utf-8")
            config = load_config(path)
        self.assertEqual(config["history"]["max_size"], 5)
        self.assertEqual(config["export"]["prefix"], "mine")
        self.assertEqual(config["export"]["size"], 450)
        self.assertEqual(config["canvas"]["size"], 450)

    def test_shipped_config_loads(self):
        config = load_config(ROOT / "config" / "default.yaml")
        self.assertEqual(config["highlight"]["default"], "#808080")


if __name__ == "__main__":
    unittest.main()
