"""
Configuration Module - Finoria Gestion
Reads and writes config.ini (database location, backups, logging, invoicing defaults)
"""

import os
import sys
import logging
import configparser
from typing import Optional

APP_NAME = "Finoria"
CONFIG_FILENAME = "config.ini"
DEFAULT_DB_FILENAME = "finoria.db"


def get_user_data_dir() -> str:
    """Writable per-user folder for the database and backups"""
    if sys.platform.startswith("win"):
        base = os.getenv("APPDATA") or os.path.expanduser("~")
        return os.path.join(base, APP_NAME)
    if sys.platform == "darwin":
        return os.path.join(os.path.expanduser("~"), "Library", "Application Support", APP_NAME)
    return os.path.join(os.path.expanduser("~"), ".local", "share", APP_NAME.lower())


def get_config_path() -> str:
    """FINORIA_CONFIG wins, else config.ini in the working directory"""
    return os.getenv("FINORIA_CONFIG") or CONFIG_FILENAME


def _defaults() -> dict:
    data_dir = get_user_data_dir()
    return {
        "DATABASE": {
            "path": os.path.join(data_dir, DEFAULT_DB_FILENAME),
        },
        "BACKUP": {
            "folder": os.path.join(data_dir, "Backups"),
        },
        "LOGGING": {
            "level": "INFO",
            "file": os.path.join(data_dir, "finoria.log"),
        },
        "FACTURATION": {
            "delai_paiement_jours": "30",
            "delai_livraison_jours": "7",
            "seuil_stock_bas": "5",
            "taux_fodec": "1.0",
        },
    }


def load_config(config_path: Optional[str] = None) -> configparser.ConfigParser:
    """
    Load config.ini and fill every missing section/key with defaults.
    A missing or unreadable file simply yields the defaults.
    """
    cfg = configparser.ConfigParser()
    cfg.read_dict(_defaults())

    path = config_path or get_config_path()
    if os.path.exists(path):
        try:
            cfg.read(path, encoding="utf-8")
        except configparser.Error as e:
            # Defaults stay in place
            logging.getLogger(__name__).warning("Fichier de configuration illisible (%s): %s", path, e)

    # Empty values fall back to defaults
    for section, values in _defaults().items():
        for key, value in values.items():
            if not cfg.get(section, key, fallback="").strip():
                cfg.set(section, key, value)
    return cfg


def save_database_path(db_path: str, config_path: Optional[str] = None) -> str:
    """Persist a new database location into config.ini"""
    path = config_path or get_config_path()
    cfg = configparser.ConfigParser()
    if os.path.exists(path):
        cfg.read(path, encoding="utf-8")

    if 'DATABASE' not in cfg:
        cfg['DATABASE'] = {}
    cfg['DATABASE']['path'] = db_path

    with open(path, 'w', encoding="utf-8") as configfile:
        cfg.write(configfile)
    return path


def get_database_path(config_path: Optional[str] = None) -> str:
    return load_config(config_path).get("DATABASE", "path")


def get_backup_folder(config_path: Optional[str] = None) -> str:
    return load_config(config_path).get("BACKUP", "folder")


def get_invoicing_settings(config_path: Optional[str] = None) -> dict:
    """Invoicing defaults as typed values"""
    cfg = load_config(config_path)
    return {
        "delai_paiement_jours": cfg.getint("FACTURATION", "delai_paiement_jours"),
        "delai_livraison_jours": cfg.getint("FACTURATION", "delai_livraison_jours"),
        "seuil_stock_bas": cfg.getfloat("FACTURATION", "seuil_stock_bas"),
        "taux_fodec": cfg.getfloat("FACTURATION", "taux_fodec"),
    }
