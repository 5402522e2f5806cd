#!/usr/bin/env python3
"""
定期メンテナンス処理のスケジューラー

cronジョブとして毎日実行されることを想定
- 古いルームデータのアーカイブと削除
- ランキングの保持レベル更新と間引き
- ログファイルへの結果出力

使用方法:
1. crontabに追加:
   0 3 * * * /path/to/python -m sorter_app.scheduler all

2. 手動実行:
   python -m sorter_app.scheduler retention --dry-run
   python -m sorter_app.scheduler --test
"""

import argparse
import logging
import os
import sys
import traceback
from datetime import datetime
from typing import Dict, List, Optional

from sorter_app.config import load_settings

logger = logging.getLogger(__name__)

TASKS = ["cleanup-rooms", "archive-games", "retention", "all", "report", "catalog"]


def setup_logging(log_dir: str) -> str:
    """月ごとのログファイルと標準出力にログを出す"""
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, f'maintenance_{datetime.now().strftime("%Y%m")}.log')

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="仕分け職人 定期メンテナンス処理")
    parser.add_argument("task", nargs="?", choices=TASKS, default="all", help="実行する処理")
    parser.add_argument("--dry-run", action="store_true", help="削除せずに対象件数のみ表示")
    parser.add_argument("--test", action="store_true", help="Firebase接続テストのみ実行")
    parser.add_argument("--pin", action="append", default=[], metavar="ID",
                        help="ランキング保持で前後の順位を残すユーザーID/エントリID（複数指定可）")
    parser.add_argument("--images-dir", default=os.path.join("public", "images", "cars"),
                        help="catalog で存在確認する画像ディレクトリ")
    return parser


def run_catalog(images_dir: str) -> int:
    """車種データベースの統計と画像ファイルの存在確認"""
    from sorter_app.car_database import catalog_stats, check_image_files

    stats = catalog_stats()
    logger.info(f"総画像数: {stats['total_images']} 枚")
    for category, count in stats["category_stats"].items():
        logger.info(f"  * {category}: {count} 枚")

    files = check_image_files(images_dir)
    logger.info(f"存在するファイル: {len(files['existing_files'])} 枚 / 不足ファイル: {len(files['missing_files'])} 枚")
    for file_name in files["missing_files"]:
        logger.warning(f"  不足: {file_name}")
    return 0 if not files["missing_files"] else 1


def run_task(task: str, manager, dry_run: bool = False, pinned_ids: Optional[List[str]] = None) -> Dict[str, object]:
    """Firebase を使う処理を実行し、結果を返す"""
    from sorter_app.analytics import AnalyticsReporter
    from sorter_app.ranking_retention import RankingRetention
    from sorter_app.room_cleanup import RoomCleanup

    results: Dict[str, object] = {}
    cleanup = RoomCleanup(manager.rtdb, manager.db)

    if task in ("archive-games", "all"):
        # アーカイブを先に行い、残りを cleanup-rooms で削除する
        results["archive-games"] = cleanup.archive_and_clean_game_data(dry_run=dry_run).to_dict()
    if task in ("cleanup-rooms", "all"):
        results["cleanup-rooms"] = cleanup.cleanup_old_rooms(dry_run=dry_run).to_dict()
    if task in ("retention", "all"):
        results["retention"] = RankingRetention(manager.db).run_all(pinned_ids or [], dry_run=dry_run)
    if task == "report":
        report = AnalyticsReporter(manager.db).build_report()
        for name, frame in report.items():
            logger.info(f"=== {name} ===\n{frame.to_string(index=False) if not frame.empty else '(データなし)'}")
        results["report"] = {name: len(frame) for name, frame in report.items()}
    return results


def main(argv: Optional[List[str]] = None, manager=None) -> int:
    """メイン処理"""
    args = build_parser().parse_args(argv)
    settings = load_settings()
    setup_logging(settings.log_dir)
    dry_run = args.dry_run or settings.dry_run

    if args.task == "catalog" and not args.test:
        return run_catalog(args.images_dir)

    try:
        logger.info(f"=== メンテナンス処理開始: {args.task} ===")
        logger.info(f"実行時刻: {datetime.now()}")

        if manager is None:
            # Firebase 初期化は実行時まで遅らせる
            from sorter_app.firestore_db import get_firestore_manager
            manager = get_firestore_manager()

        if args.test:
            return 0 if manager.test_connection() else 1

        results = run_task(args.task, manager, dry_run=dry_run, pinned_ids=args.pin)
        for name, result in results.items():
            logger.info(f"{name}: {result}")

        failed = [
            name for name, result in results.items()
            if isinstance(result, dict) and (
                result.get("failed") or result.get("archive_failed")
                or any(isinstance(r, dict) and (r.get("error") or r.get("failed_batches")) for r in result.values())
            )
        ]
        if failed:
            logger.error(f"❌ 一部の処理でエラーが発生しました: {failed}")
            return 1

        logger.info("✅ メンテナンス処理が正常に完了しました")
        return 0

    except Exception as e:
        logger.error(f"予期しないエラーが発生しました: {e}")
        logger.error(f"トレースバック: {traceback.format_exc()}")
        return 1

    finally:
        logger.info("=== メンテナンス処理終了 ===")


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
