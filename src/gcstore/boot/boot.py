import os
import pathlib
import logging
import zrlog
import zirconium as zr

__VERSION__ = "0.1.0"


def _config_paths():
    yield pathlib.Path(".").absolute()
    yield pathlib.Path("~").expanduser().absolute()
    custom_config_path = os.environ.get("GCSTORE_CONFIG_SEARCH_PATHS", "./config")
    if custom_config_path:
        paths = custom_config_path.split(";")
        for path in paths:
            if path:
                p = pathlib.Path(path).absolute()
                if p.exists():
                    yield p


def init_gcstore(app_type: str):
    # The storage client logs every HTTP request at DEBUG
    logging.getLogger("urllib3").setLevel(logging.INFO)
    logging.getLogger("google.auth").setLevel(logging.INFO)

    @zr.configure
    def set_config(app_config: zr.ApplicationConfig):
        config_paths = [x for x in _config_paths()]
        logging.getLogger("gcstore.boot").info(f"Config Search Paths: {';'.join(str(x) for x in config_paths)}")
        for path in config_paths:
            app_config.register_default_file(path / ".gcstore.defaults.toml")
            app_config.register_default_file(path / f".gcstore.{app_type}.defaults.toml")
            app_config.register_file(path / ".gcstore.toml")
            app_config.register_file(path / f".gcstore.{app_type}.toml")
    zrlog.set_default_extra("app_type", app_type)
    zrlog.set_default_extra("version", __VERSION__)
    zrlog.init_logging()
