import configparser

import config
from config import (load_config, get_database_path, get_backup_folder, get_invoicing_settings,
                    save_database_path)


class TestConfig:
    """Tests for config.ini handling"""

    def test_paths_come_from_config_file(self, tmp_path):
        assert get_database_path() == str(tmp_path / "finoria-test.db")
        assert get_backup_folder() == str(tmp_path / "Backups")

    def test_missing_sections_get_defaults(self):
        settings = get_invoicing_settings()

        assert settings == {
            "delai_paiement_jours": 30,
            "delai_livraison_jours": 7,
            "seuil_stock_bas": 5.0,
            "taux_fodec": 1.0,
        }

    def test_custom_invoicing_values(self, tmp_path):
        path = tmp_path / "custom.ini"
        path.write_text("[FACTURATION]\ndelai_paiement_jours = 45\ntaux_fodec = 2\n", encoding="utf-8")

        settings = get_invoicing_settings(str(path))

        assert settings["delai_paiement_jours"] == 45
        assert settings["taux_fodec"] == 2.0
        assert settings["delai_livraison_jours"] == 7

    def test_empty_value_falls_back_to_default(self, tmp_path):
        path = tmp_path / "empty.ini"
        path.write_text("[FACTURATION]\nseuil_stock_bas =\n", encoding="utf-8")

        assert get_invoicing_settings(str(path))["seuil_stock_bas"] == 5.0

    def test_missing_file_yields_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "get_user_data_dir", lambda: str(tmp_path / "data"))

        cfg = load_config(str(tmp_path / "absent.ini"))

        assert cfg.get("DATABASE", "path") == str(tmp_path / "data" / "finoria.db")

    def test_unreadable_file_yields_defaults(self, tmp_path):
        path = tmp_path / "broken.ini"
        path.write_text("path sans section\n", encoding="utf-8")

        cfg = load_config(str(path))

        assert cfg.get("LOGGING", "level") == "INFO"

    def test_save_database_path_keeps_other_sections(self, config_file, tmp_path):
        new_path = str(tmp_path / "ailleurs.db")

        save_database_path(new_path)

        saved = configparser.ConfigParser()
        saved.read(config_file, encoding="utf-8")
        assert saved["DATABASE"]["path"] == new_path
        assert saved["LOGGING"]["level"] == "DEBUG"
        assert get_database_path() == new_path
