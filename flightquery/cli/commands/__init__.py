# FlightQuery CLI Commands
"""
コマンドモジュールのエクスポート
"""

from flightquery.cli.commands.config_cmd import config_app

__all__ = [
    "config_app",
]
