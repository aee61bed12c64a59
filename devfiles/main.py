#!/usr/bin/env python

import argparse
import logging
import os
import sys
from typing import List, Optional

from flask import Flask, jsonify

from devfiles.api import GATEWAY_KEY, files_bp
from devfiles.config import GatewayConfig
from devfiles.gateway import FileGateway


def create_app(config: Optional[GatewayConfig] = None, gateway: Optional[FileGateway] = None) -> Flask:
    """Build the Flask host around one immutable config and gateway."""
    config = config or GatewayConfig.from_env()
    app = Flask(__name__)
    app.config["DEVFILES"] = config
    app.config["MAX_CONTENT_LENGTH"] = config.max_upload_mb * 1024 * 1024
    app.extensions[GATEWAY_KEY] = gateway or FileGateway(config)
    app.register_blueprint(files_bp)

    @app.route('/')
    def status():
        return jsonify({
            "ok": True,
            "data": {
                "message": "File manager API ready",
                "managed_root": config.managed_root,
                "sudo_enabled": config.sudo_enabled,
            },
        })

    app.logger.info(
        "devfiles: managing %s (sudo %s)",
        config.managed_root,
        "enabled" if config.sudo_enabled else "disabled",
    )
    return app


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Privileged file manager backend")
    parser.add_argument('--host', default=os.environ.get('DEVFILES_HOST', '127.0.0.1'))
    parser.add_argument('--port', type=int, default=int(os.environ.get('DEVFILES_PORT', '8080')))
    parser.add_argument('--root', help='managed root directory (overrides DEVFILES_ROOT)')
    parser.add_argument('--no-sudo', action='store_true', help='never escalate through sudo')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.environ.get('DEVFILES_LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    environ = dict(os.environ)
    if args.root:
        environ['DEVFILES_ROOT'] = args.root
    if args.no_sudo:
        environ['DEVFILES_SUDO'] = 'false'
    try:
        config = GatewayConfig.from_env(environ)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    app = create_app(config)
    print("--- Starting Server ---")
    app.run(host=args.host, port=args.port, debug=False)
    return 0


if __name__ == '__main__':
    sys.exit(main())
