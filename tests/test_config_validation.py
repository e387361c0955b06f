import configparser
import unittest

import pytest

from route_monitor.config_manager import (ConfigValidator, MonitorSettings, TEMPLATE_PATH, load_config,
                                          load_settings, update_config)


class TestConfigValidation(unittest.TestCase):
    def setUp(self):
        self.config = configparser.ConfigParser()
        # Setup minimal valid config
        self.config['DAEMON'] = {'base_url': 'http://localhost:4444', 'timeout': '10', 'verify_cert': 'true'}
        self.config['DASHBOARD'] = {'page_size': '25', 'default_interval': '5'}

    def test_minimal_config_is_valid(self):
        validator = ConfigValidator(self.config)
        self.assertTrue(validator.validate())
        self.assertEqual(validator.errors, [])
        self.assertEqual(validator.warnings, [])

    def test_missing_section(self):
        self.config.remove_section('DASHBOARD')
        validator = ConfigValidator(self.config)
        self.assertFalse(validator.validate())
        self.assertIn("Missing required section: [DASHBOARD]", validator.errors)

    def test_empty_base_url(self):
        self.config['DAEMON']['base_url'] = '  '
        validator = ConfigValidator(self.config)
        self.assertFalse(validator.validate())
        self.assertEqual(validator.errors, ["Option 'base_url' in [DAEMON] is empty"])

    def test_base_url_must_be_http(self):
        for url in ('localhost:4444', 'ftp://daemon', 'http://'):
            self.config['DAEMON']['base_url'] = url
            validator = ConfigValidator(self.config)
            self.assertFalse(validator.validate(), url)

    def test_invalid_log_mode(self):
        self.config['DASHBOARD']['log_mode'] = 'tail'
        validator = ConfigValidator(self.config)
        self.assertFalse(validator.validate())
        self.assertIn("log_mode", validator.errors[0])

    def test_invalid_boolean(self):
        self.config['DAEMON']['verify_cert'] = 'sometimes'
        validator = ConfigValidator(self.config)
        self.assertFalse(validator.validate())

    def test_non_integer_is_an_error(self):
        self.config['DASHBOARD']['page_size'] = 'many'
        validator = ConfigValidator(self.config)
        self.assertFalse(validator.validate())
        self.assertEqual(validator.errors, ["Option 'page_size' in [DASHBOARD] must be an integer"])

    def test_page_size_out_of_range_warns(self):
        self.config['DASHBOARD']['page_size'] = '500'
        validator = ConfigValidator(self.config)
        self.assertTrue(validator.validate())
        warnings = [w for w in validator.warnings if 'page_size' in w]
        self.assertTrue(warnings, "Expected warning for page_size=500")

    def test_action_settle_ms_zero_is_allowed(self):
        self.config['DASHBOARD']['action_settle_ms'] = '0'
        validator = ConfigValidator(self.config)
        self.assertTrue(validator.validate())
        self.assertEqual(validator.warnings, [])


class TestMonitorSettings(unittest.TestCase):
    def test_defaults_fill_missing_options(self):
        config = configparser.ConfigParser()
        config['DAEMON'] = {'base_url': ' https://daemon.lan '}
        settings = MonitorSettings.from_config(config)
        self.assertEqual(settings.base_url, 'https://daemon.lan')
        self.assertEqual(settings.page_size, 25)
        self.assertTrue(settings.verify_cert)
        self.assertEqual(settings.log_mode, 'auto')
        self.assertEqual(settings.settle_seconds, 0.5)

    def test_values_are_typed(self):
        config = configparser.ConfigParser()
        config['DAEMON'] = {'base_url': 'http://d', 'timeout': '2.5', 'verify_cert': 'no'}
        config['DASHBOARD'] = {'page_size': '50', 'action_settle_ms': '1500', 'log_mode': 'POLL'}
        settings = MonitorSettings.from_config(config)
        self.assertEqual(settings.timeout, 2.5)
        self.assertFalse(settings.verify_cert)
        self.assertEqual(settings.page_size, 50)
        self.assertEqual(settings.settle_seconds, 1.5)
        self.assertEqual(settings.log_mode, 'poll')


def test_template_is_a_valid_config():
    config = load_config(str(TEMPLATE_PATH))
    assert ConfigValidator(config).validate()


def test_update_config_creates_missing_file(tmp_path):
    config_path = tmp_path / "nested" / "config.ini"
    update_config(str(config_path))
    assert config_path.read_text() == TEMPLATE_PATH.read_text()


def test_update_config_adds_new_options_and_keeps_user_values(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[DAEMON]\n# my daemon\nbase_url = http://seedbox:4444\n")

    update_config(str(config_path))

    text = config_path.read_text()
    assert "# my daemon" in text
    config = load_config(str(config_path))
    assert config['DAEMON']['base_url'] == 'http://seedbox:4444'
    assert config['DAEMON']['timeout'] == '10'
    assert config['DASHBOARD']['page_size'] == '25'
    backups = list((tmp_path / "backup").iterdir())
    assert len(backups) == 1
    assert "seedbox" in backups[0].read_text()


def test_update_config_leaves_an_up_to_date_file_alone(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text(TEMPLATE_PATH.read_text())
    update_config(str(config_path))
    assert not (tmp_path / "backup").exists()


def test_update_config_without_template_exits(tmp_path):
    with pytest.raises(SystemExit):
        update_config(str(tmp_path / "config.ini"), template_path=str(tmp_path / "missing.template"))


def test_load_settings_exits_on_invalid_config(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[DAEMON]\nbase_url = nowhere\n[DASHBOARD]\npage_size = 25\ndefault_interval = 5\n")
    with pytest.raises(SystemExit):
        load_settings(str(config_path))
