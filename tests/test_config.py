"""Tests for configuration loading and validation."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
import unittest

from quan_chatbot.config import DEFAULT_CONFIG, ensure_config_dir, load_config


class ConfigTests(unittest.TestCase):
    """Validate config merge and fallback behavior."""

    def _load(self, text: str | None) -> dict:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            if text is not None:
                config_path.write_text(text.strip(), encoding="utf-8")
            return load_config(config_path=config_path)

    def test_missing_config_uses_defaults(self) -> None:
        config = self._load(None)
        self.assertEqual(config, DEFAULT_CONFIG)
        self.assertEqual(config["client"]["endpoint"], "ws://localhost:3000/ws")
        self.assertEqual(config["server"]["port"], 3000)
        self.assertEqual(config["server"]["path"], "/ws")
        self.assertTrue(config["client"]["auto_reconnect"])
        self.assertEqual(config["keybinds"]["send_message"], "ctrl+enter")

    def test_partial_config_overrides_selected_values(self) -> None:
        config = self._load(
            """
[server]
port = 8765

[client]
endpoint = "ws://127.0.0.1:8765/ws"
reconnect_attempts = 5

[ollama]
model = "qwen2.5"
            """
        )
        self.assertEqual(config["server"]["port"], 8765)
        self.assertEqual(config["client"]["endpoint"], "ws://127.0.0.1:8765/ws")
        self.assertEqual(config["client"]["reconnect_attempts"], 5)
        self.assertEqual(config["ollama"]["model"], "qwen2.5")
        self.assertEqual(config["app"]["title"], DEFAULT_CONFIG["app"]["title"])

    def test_invalid_values_fallback_to_defaults(self) -> None:
        config = self._load(
            """
[ollama]
timeout = -1

[server]
path = "ws"
            """
        )
        self.assertEqual(config["ollama"]["timeout"], DEFAULT_CONFIG["ollama"]["timeout"])
        self.assertEqual(config["server"]["path"], DEFAULT_CONFIG["server"]["path"])

    def test_non_websocket_endpoint_is_rejected(self) -> None:
        config = self._load(
            """
[client]
endpoint = "http://localhost:3000/ws"
            """
        )
        self.assertEqual(config["client"]["endpoint"], DEFAULT_CONFIG["client"]["endpoint"])

    def test_unparseable_toml_falls_back_to_defaults(self) -> None:
        config = self._load("[server\nport = ")
        self.assertEqual(config, DEFAULT_CONFIG)

    def test_remote_endpoint_disallowed_by_default_policy(self) -> None:
        config = self._load(
            """
[client]
endpoint = "wss://chat.example.com/ws"
            """
        )
        self.assertEqual(config["client"]["endpoint"], DEFAULT_CONFIG["client"]["endpoint"])
        self.assertFalse(config["security"]["allow_remote_hosts"])

    def test_remote_hosts_allowed_when_policy_enabled(self) -> None:
        config = self._load(
            """
[client]
endpoint = "wss://chat.example.com/ws"

[ollama]
host = "http://gpu.example.com:11434"

[security]
allow_remote_hosts = true
allowed_hosts = ["localhost"]
            """
        )
        self.assertEqual(config["client"]["endpoint"], "wss://chat.example.com/ws")
        self.assertEqual(config["ollama"]["host"], "http://gpu.example.com:11434")

    def test_blank_keybind_is_kept_blank(self) -> None:
        config = self._load(
            """
[keybinds]
toggle_dark_mode = "  "
            """
        )
        self.assertEqual(config["keybinds"]["toggle_dark_mode"], "")

    @unittest.skipUnless(os.name == "posix", "permissions are POSIX-only")
    def test_config_file_permissions_are_tightened(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            config_path.write_text("[app]\ntitle = \"Mine\"\n", encoding="utf-8")
            config_path.chmod(0o644)
            config = load_config(config_path=config_path)
            self.assertEqual(config["app"]["title"], "Mine")
            self.assertEqual(config_path.stat().st_mode & 0o777, 0o600)

    def test_ensure_config_dir_creates_directory(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            target = Path(temp_dir) / "nested" / "quan-chatbot"
            self.assertEqual(ensure_config_dir(target), target)
            self.assertTrue(target.is_dir())


if __name__ == "__main__":
    unittest.main()
