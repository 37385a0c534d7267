"""Tests for configuration schema and loader."""

import json

from desperados.config import DespConfig, MulticastConfig, RangerConfig, load_config, save_config


class TestSchema:
    def test_defaults(self):
        cfg = DespConfig()
        assert cfg.multicast.group == "239.0.0.0:11332"
        assert cfg.multicast.source_address == ""
        assert cfg.multicast.bind_address == "0.0.0.0"
        assert cfg.multicast.read_timeout == 1.0
        assert cfg.ranger.port == 11332
        assert cfg.ranger.transport == "udp"

    def test_camel_case_keys(self):
        cfg = MulticastConfig.model_validate({"sourceAddress": "10.0.0.5", "readTimeout": 0.5})
        assert cfg.source_address == "10.0.0.5"
        assert cfg.read_timeout == 0.5

    def test_snake_case_keys(self):
        cfg = RangerConfig.model_validate({"probe_timeout": 0.25, "transport": "tcp"})
        assert cfg.probe_timeout == 0.25
        assert cfg.transport == "tcp"


class TestLoader:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "nope.json")
        assert cfg.multicast.group == "239.0.0.0:11332"

    def test_load_partial_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"ranger": {"probeTimeout": 0.5, "port": 4000}}))
        cfg = load_config(path)
        assert cfg.ranger.probe_timeout == 0.5
        assert cfg.ranger.port == 4000
        assert cfg.multicast.read_buffer == 8192

    def test_invalid_json_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        cfg = load_config(path)
        assert cfg.ranger.port == 11332

    def test_invalid_value_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"ranger": {"transport": "carrier-pigeon"}}))
        cfg = load_config(path)
        assert cfg.ranger.transport == "udp"

    def test_save_writes_camel_case(self, tmp_path):
        path = tmp_path / "sub" / "config.json"
        cfg = DespConfig()
        cfg.multicast.source_address = "192.168.1.20"
        save_config(cfg, path)

        data = json.loads(path.read_text())
        assert data["multicast"]["sourceAddress"] == "192.168.1.20"
        assert load_config(path).multicast.source_address == "192.168.1.20"
