#!/usr/bin/env python3
"""AD Provider Server"""
import argparse
import os
import socket
import sys
from pathlib import Path


def main():
    root_dir = Path(__file__).parent.resolve()
    backend_dir = root_dir / "backend"
    sys.path.insert(0, str(backend_dir))

    parser = argparse.ArgumentParser(description="AD Provider Server")
    parser.add_argument("--host", default=None, help="Host to bind (default: ADPROVIDER_API_HOST or 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port to bind (default: ADPROVIDER_API_PORT or 8000)")
    parser.add_argument("--config", "-c", default=None, help="Provider YAML configuration file")
    parser.add_argument("--reload", "-r", action="store_true", help="Enable auto-reload")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug mode")
    args = parser.parse_args()

    # Settings are read from the environment at import time
    if args.debug:
        os.environ["ADPROVIDER_DEBUG"] = "true"
    if args.config:
        os.environ["ADPROVIDER_PROVIDER_CONFIG"] = str(Path(args.config).resolve())

    from adprovider.config import settings

    host = args.host or settings.api_host
    port = args.port or settings.api_port

    print("=" * 50)
    print(settings.app_name)
    print("=" * 50)
    print(f"  Host: {host}")
    print(f"  Port: {port}")
    print(f"  Provider config: {settings.provider_config}")
    print(f"  Reload: {args.reload}")
    print(f"  Debug: {settings.debug}")
    print("=" * 50)
    print(f"\n  → http://{host}:{port}/docs (Swagger UI)")
    print("\n  Press Ctrl+C to stop\n")

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
    except OSError:
        print(f"\n  ✗ ERROR: port {port} is already in use")
        print(f"    Use another port: python run.py -p {port + 1}\n")
        sys.exit(1)
    finally:
        sock.close()

    import uvicorn
    try:
        uvicorn.run(
            "adprovider.main:app",
            host=host,
            port=port,
            reload=args.reload,
            app_dir=str(backend_dir),
            log_level="debug" if settings.debug else "info",
            access_log=True,
            use_colors=False,
        )
    except KeyboardInterrupt:
        pass

    print("\nStopped.")


if __name__ == "__main__":
    main()
