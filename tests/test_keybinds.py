import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from mcpterm.ui.keybinds import KEYBINDS, binding_list, display_key, render_keybinds


class TestKeybinds(unittest.TestCase):
    def test_display_keys(self) -> None:
        self.assertEqual(display_key("f2"), "F2")
        self.assertEqual(display_key("ctrl+h"), "^H")
        self.assertEqual(display_key("pageup"), "pageup")

    def test_render_lists_each_action_once(self) -> None:
        rendered = render_keybinds()
        self.assertEqual(rendered.count("Help"), 1)
        self.assertIn("F2 Reconnect", rendered)
        self.assertIn("F11 Cancel", rendered)

    def test_bindings_match_specs(self) -> None:
        bindings = binding_list()
        self.assertEqual([b.key for b in bindings], [spec.key for spec in KEYBINDS])
        self.assertTrue(all(b.priority for b in bindings))
