import pathlib
import tempfile
import unittest

from observatory.config import FilterConfig, ObservatoryConfig, StreamingConfig, config_from_mapping, load_config
from observatory.core.models import DataScenario


class StreamingConfigTest(unittest.TestCase):
    def test_defaults(self):
        cfg = StreamingConfig().sanitized()
        self.assertEqual(cfg.max_buffer_size, 10_000)
        self.assertEqual(cfg.tick_interval_ms, 100)
        self.assertEqual(cfg.points_per_tick, 1)
        self.assertIs(cfg.scenario, DataScenario.NORMAL)
        self.assertAlmostEqual(cfg.tick_interval_s, 0.1)
        self.assertAlmostEqual(cfg.nominal_rate_hz, 10.0)

    def test_merged_accepts_camel_case(self):
        cfg = StreamingConfig().merged({"maxBufferSize": 500, "pointsPerTick": 3, "scenario": "peak-hours"})
        self.assertEqual(cfg.max_buffer_size, 500)
        self.assertEqual(cfg.points_per_tick, 3)
        self.assertIs(cfg.scenario, DataScenario.PEAK_HOURS)

    def test_merged_ignores_unknown_keys(self):
        with self.assertLogs("observatory.config.runtime", level="WARNING"):
            cfg = StreamingConfig().merged({"colour": "blue", "tickIntervalMs": 50})
        self.assertEqual(cfg.tick_interval_ms, 50)

    def test_invalid_values_raise(self):
        for changes in (
            {"max_buffer_size": 0},
            {"tick_interval_ms": -5},
            {"points_per_tick": 1.5},
            {"scenario": "apocalypse"},
            {"categories": []},
        ):
            with self.subTest(changes=changes):
                with self.assertRaises(ValueError):
                    StreamingConfig().merged(changes)

    def test_reconnect_is_opt_in(self):
        cfg = StreamingConfig().sanitized()
        self.assertFalse(cfg.auto_reconnect)
        self.assertEqual(cfg.max_reconnect_attempts, 5)
        self.assertEqual(cfg.reconnect_interval_ms, 1000)

        cfg = StreamingConfig().merged({"autoReconnect": "yes", "maxReconnectAttempts": 2, "reconnectIntervalMs": 250})
        self.assertTrue(cfg.auto_reconnect)
        self.assertEqual(cfg.max_reconnect_attempts, 2)
        self.assertEqual(cfg.reconnect_interval_ms, 250)

        for changes in ({"auto_reconnect": "sometimes"}, {"max_reconnect_attempts": -1}, {"reconnect_interval_ms": 0}):
            with self.subTest(changes=changes):
                with self.assertRaises(ValueError):
                    StreamingConfig().merged(changes)

    def test_zero_points_per_tick_is_allowed(self):
        self.assertEqual(StreamingConfig(points_per_tick=0).sanitized().points_per_tick, 0)


class ConfigLoadingTest(unittest.TestCase):
    def test_empty_mapping_gives_defaults(self):
        self.assertEqual(config_from_mapping(None), ObservatoryConfig())
        self.assertEqual(config_from_mapping({}), ObservatoryConfig())

    def test_filter_block(self):
        cfg = config_from_mapping({"filter": {"debounceMs": 50, "cache_size": 5}})
        self.assertEqual(cfg.filter, FilterConfig(debounce_ms=50, cache_size=5))

    def test_sections_must_be_mappings(self):
        with self.assertRaises(ValueError):
            config_from_mapping({"streaming": [1, 2]})

    def test_missing_file_falls_back_to_defaults(self):
        self.assertEqual(load_config("/nonexistent/observatory.yaml"), ObservatoryConfig())
        self.assertEqual(load_config(None), ObservatoryConfig())

    def test_yaml_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = pathlib.Path(tmp) / "observatory.yaml"
            path.write_text(
                "streaming:\n"
                "  max_buffer_size: 2000\n"
                "  scenario: high_load\n"
                "  categories: [cpu, disk]\n"
                "filter:\n"
                "  debounce_ms: 120\n",
                encoding="utf-8",
            )
            cfg = load_config(path)
        self.assertEqual(cfg.streaming.max_buffer_size, 2000)
        self.assertIs(cfg.streaming.scenario, DataScenario.HIGH_LOAD)
        self.assertEqual(cfg.streaming.categories, ("cpu", "disk"))
        self.assertEqual(cfg.filter.debounce_ms, 120)

    def test_yaml_must_hold_a_mapping(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = pathlib.Path(tmp) / "bad.yaml"
            path.write_text("- just\n- a list\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_config(path)


if __name__ == "__main__":
    unittest.main()
