import os
import toml
import yaml
from dotenv import dotenv_values


def get_default_config():
    """Get default configuration"""
    # Project root is two levels above shotpipe/config/
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

    return {
        # Storage
        "project_db_path": os.path.join(project_root, "projects/projects.db"),

        # Logging
        "log_file": os.path.join(project_root, "logs/app.log"),
        "log_level": "INFO",
        "log_console": False,

        # Project defaults
        "default_language": "中文",
        "default_visual_style": "live-action",
        "default_video_model": "sora-2",
        "image_aspect_ratio": "16:9",
        "interval_duration_sec": 10,
        "interval_motion_strength": 5,

        # Batch generation
        "batch_delay_sec": 3.0,

        # Generation gateway
        "api_base": "https://api.antsk.cn",
        "api_key": "",

        # Text model used for nine-grid planning
        "text_model_id": "gpt-5.1",
        "text_model_api_key": "",
        "text_model_base_url": "",
        "text_model_extra_params": "",

        # Other settings
        "proxy_host": "",
        "proxy_port": "",

        # Generation service configuration (merged from yaml)
        "services": {},
    }


def load_services_config(config_dir):
    """
    Load generation service settings (models, endpoints, timeouts) from YAML.
    """
    services_dir = os.path.join(config_dir, "services_config")
    config_path = os.path.join(services_dir, "config.yaml")
    if not os.path.exists(config_path):
        config_path = os.path.join(services_dir, "config.example.yaml")

    services = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            services = yaml.safe_load(f) or {}
    return services


def _read_env(project_root):
    package_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    env_candidates = [
        os.path.join(package_root, ".env"),
        os.path.join(project_root, ".env"),
    ]
    env_path = next((p for p in env_candidates if os.path.exists(p)), None)

    env_vars = {}
    if env_path:
        env_vars.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
    # Real environment wins over the .env file.
    env_vars.update(os.environ)
    return env_vars


def apply_env_overrides(config, env_vars):
    if env_vars.get("SHOTPIPE_API_KEY"):
        config["api_key"] = env_vars["SHOTPIPE_API_KEY"]
    if env_vars.get("SHOTPIPE_API_BASE"):
        config["api_base"] = env_vars["SHOTPIPE_API_BASE"]
    if env_vars.get("SHOTPIPE_DB_PATH"):
        config["project_db_path"] = env_vars["SHOTPIPE_DB_PATH"]
    if env_vars.get("SHOTPIPE_LOG_FILE"):
        config["log_file"] = env_vars["SHOTPIPE_LOG_FILE"]
    if env_vars.get("SHOTPIPE_LOG_LEVEL"):
        config["log_level"] = env_vars["SHOTPIPE_LOG_LEVEL"]
    if "SHOTPIPE_LOG_CONSOLE" in env_vars:
        config["log_console"] = env_vars["SHOTPIPE_LOG_CONSOLE"].lower() == "true"
    if env_vars.get("BATCH_DELAY_SEC"):
        config["batch_delay_sec"] = float(env_vars["BATCH_DELAY_SEC"])

    # Proxy
    if env_vars.get("PROXY_HOST"): config["proxy_host"] = env_vars["PROXY_HOST"]
    if env_vars.get("PROXY_PORT"): config["proxy_port"] = env_vars["PROXY_PORT"]

    # Text model falls back to the gateway credentials
    config["text_model_id"] = env_vars.get("TEXT_MODEL_ID", config.get("text_model_id"))
    config["text_model_api_key"] = env_vars.get("TEXT_MODEL_API_KEY", config.get("text_model_api_key")) or config["api_key"]
    text_base_url = env_vars.get("TEXT_MODEL_BASE_URL", config.get("text_model_base_url", "")).strip()
    if not text_base_url and config.get("api_base"):
        text_base_url = config["api_base"].rstrip("/") + "/v1"
    config["text_model_base_url"] = text_base_url
    config["text_model_extra_params"] = env_vars.get("TEXT_MODEL_EXTRA_PARAMS", config.get("text_model_extra_params", ""))
    return config


def load_config():
    """Load configuration from the TOML file, .env and the services YAML."""
    config_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(os.path.dirname(config_dir))

    CONFIG_FILE = os.environ.get("SHOTPIPE_CONFIG") or os.path.join(config_dir, "config.toml")
    if not os.path.exists(CONFIG_FILE):
        CONFIG_FILE = os.path.join(config_dir, "config.example.toml")

    config = get_default_config()
    if os.path.exists(CONFIG_FILE):
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            config.update(toml.load(f))

    config = apply_env_overrides(config, _read_env(project_root))
    config["services"] = load_services_config(config_dir)

    # Set up proxy settings if configured
    PROXY_HOST = config.get("proxy_host")
    PROXY_PORT = config.get("proxy_port")
    if PROXY_HOST and PROXY_PORT:
        os.environ["http_proxy"] = f"http://{PROXY_HOST}:{PROXY_PORT}"
        os.environ["https_proxy"] = f"http://{PROXY_HOST}:{PROXY_PORT}"

    return CONFIG_FILE, config


CONFIG_FILE, config = load_config()
