#!/usr/bin/env python3
"""
Google Drive 上传网关启动脚本

基于 FastAPI + httpx + Pillow 构建

使用方法:
    python run.py                          # 默认配置启动
    python run.py --port 9000              # 指定端口
    python run.py --config my.yaml         # 指定配置文件
    python run.py --debug                  # 调试模式（DEBUG 日志 + 热重载）

环境变量 (也可写在 .env 或 config.yaml 中，环境变量优先):
    GOOGLE_CLIENT_ID: OAuth 客户端 ID (必填)
    GOOGLE_CLIENT_SECRET: OAuth 客户端密钥 (必填)
    GOOGLE_REDIRECT_URL: OAuth 回调地址 (默认: http://localhost:8080/callback)
    GATEWAY_HOST / GATEWAY_PORT: 监听地址和端口 (默认: 0.0.0.0:8080)
    UPLOAD_MAX_CONCURRENCY: 单次请求并发上传数 (默认: 4)
    UPLOAD_IMAGE_POLICY: auto / all / none (默认: auto)
    DATA_DIR: 数据目录，存放 token.json 和日志 (默认: ~/.drive_gateway)
    LOG_LEVEL: 日志级别 (默认: INFO)
"""
import argparse
import json
import os
import sys

# 添加项目根目录到 Python 路径
ROOT_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, ROOT_DIR)


# config.yaml 的分组/键 -> 环境变量
YAML_ENV_KEYS = {
    "google": {
        "client_id": "GOOGLE_CLIENT_ID",
        "client_secret": "GOOGLE_CLIENT_SECRET",
        "redirect_url": "GOOGLE_REDIRECT_URL",
        "scopes": "GOOGLE_SCOPES",
        "state": "OAUTH_STATE",
    },
    "gateway": {
        "host": "GATEWAY_HOST",
        "port": "GATEWAY_PORT",
        "debug": "GATEWAY_DEBUG",
        "enable_cors": "ENABLE_CORS",
        "cors_origins": "CORS_ORIGINS",
    },
    "upload": {
        "max_concurrency": "UPLOAD_MAX_CONCURRENCY",
        "max_files": "UPLOAD_MAX_FILES",
        "image_policy": "UPLOAD_IMAGE_POLICY",
        "image_quality": "UPLOAD_IMAGE_QUALITY",
    },
    "remote": {
        "timeout": "REMOTE_TIMEOUT",
        "max_retries": "REMOTE_MAX_RETRIES",
        "backoff_base": "REMOTE_BACKOFF_BASE",
        "backoff_max": "REMOTE_BACKOFF_MAX",
    },
    "log": {
        "level": "LOG_LEVEL",
        "format": "LOG_FORMAT",
    },
}

# 不分组的顶层键
YAML_ROOT_KEYS = {
    "data_dir": "DATA_DIR",
    "token_file": "TOKEN_FILE",
}


def _env_value(value) -> str:
    """转换为 pydantic-settings 能解析的字符串，列表用 JSON"""
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def _yaml_to_env(config_path: str) -> int:
    """
    将 config.yaml 中的配置写入环境变量（已存在的环境变量不覆盖）

    Returns:
        写入的环境变量个数
    """
    if not os.path.isfile(config_path):
        return 0

    import yaml

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        return 0

    pairs = [(env_key, data.get(key)) for key, env_key in YAML_ROOT_KEYS.items()]
    for group, keys in YAML_ENV_KEYS.items():
        section = data.get(group) or {}
        pairs.extend((env_key, section.get(key)) for key, env_key in keys.items())

    count = 0
    for env_key, value in pairs:
        if value is None or env_key in os.environ:
            continue
        os.environ[env_key] = _env_value(value)
        count += 1
    return count


def main():
    parser = argparse.ArgumentParser(
        description='Google Drive Upload Gateway',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--host', default=None, help='监听地址 (默认: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=None, help='监听端口 (默认: 8080)')
    parser.add_argument('--config', default=os.path.join(ROOT_DIR, 'config.yaml'),
                        help='配置文件路径 (默认: ./config.yaml)')
    parser.add_argument('--debug', action='store_true', help='调试模式')
    parser.add_argument('--reload', action='store_true', help='代码变更时自动重启')

    args = parser.parse_args()

    # 命令行参数优先于配置文件
    overrides = {
        'GATEWAY_HOST': args.host,
        'GATEWAY_PORT': args.port,
        'GATEWAY_DEBUG': True if args.debug else None,
        'LOG_LEVEL': 'DEBUG' if args.debug else None,
    }
    for key, value in overrides.items():
        if value is not None:
            os.environ[key] = _env_value(value)

    loaded = _yaml_to_env(args.config)

    from app.core.config import APP_VERSION, get_settings
    from app.core.exceptions import ConfigError

    settings = get_settings()
    try:
        settings.google.require_credentials()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    base_url = f"http://localhost:{settings.gateway.port}"
    print(f"""
Drive Upload Gateway v{APP_VERSION} (Python {sys.version.split()[0]})
  Listen:   {settings.gateway.host}:{settings.gateway.port}
  Config:   {args.config if loaded else '(environment only)'}
  Token:    {settings.token_path}
  Policy:   image={settings.upload.image_policy}, concurrency={settings.upload.max_concurrency}

  授权入口: {base_url}/
  API 文档: {base_url}/docs
  健康检查: {base_url}/api/system/health

Press Ctrl+C to stop the server.
""")

    import uvicorn

    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=settings.gateway.host,
        port=settings.gateway.port,
        reload=args.reload or settings.gateway.debug,
        log_level=settings.log.level.lower()
    )


if __name__ == '__main__':
    main()
