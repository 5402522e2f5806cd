#!/usr/bin/env python3
"""
定期メンテナンススクリプト（手動/バッチ実行用）

Firebase の認証情報は .secrets/secrets.toml もしくは
GOOGLE_APPLICATION_CREDENTIALS から読み込むため、
認証がない環境では失敗する点に注意してください。
"""

import sys


def main() -> int:
    try:
        from sorter_app.scheduler import main as scheduler_main
        return scheduler_main(sys.argv[1:] or ["all"])
    except Exception as e:
        print(f"Maintenance failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
