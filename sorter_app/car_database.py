"""
車種画像データベース

カテゴリごとの画像カタログと、ゲーム用カードの生成処理を提供する。
"""

import os
import random
import time
from typing import Dict, List, Optional, Sequence

from sorter_app.constants import CAR_CATEGORIES, CAR_IMAGE_BASE_URL, CATEGORY_SLUGS
from sorter_app.models import Car, CarImage

IMAGES_PER_CATEGORY = 6


def _build_catalog() -> List[CarImage]:
    catalog = []
    for category in CAR_CATEGORIES:
        slug = CATEGORY_SLUGS[category]
        for n in range(1, IMAGES_PER_CATEGORY + 1):
            catalog.append(CarImage(id=f"{slug}_{n:03d}", file_name=f"{slug}{n}.png", category=category))
    return catalog


# 各車種ごとの画像リスト
CAR_IMAGE_DATABASE: List[CarImage] = _build_catalog()


def images_by_category(category: str, catalog: Sequence[CarImage] = None) -> List[CarImage]:
    """カテゴリに属する画像を取得"""
    catalog = CAR_IMAGE_DATABASE if catalog is None else catalog
    return [image for image in catalog if image.category == category]


def random_image_by_category(category: str, rng: random.Random = None,
                             catalog: Sequence[CarImage] = None) -> Optional[CarImage]:
    """カテゴリからランダムに画像を1枚選択（画像がなければ None）"""
    rng = rng or random
    images = images_by_category(category, catalog)
    if not images:
        return None
    return rng.choice(images)


def image_url(image: CarImage) -> str:
    return f"{CAR_IMAGE_BASE_URL}/{image.file_name}"


def generate_game_cards(total_cards: int = 20, categories: Sequence[str] = None,
                        rng: random.Random = None, now_ms: int = None,
                        catalog: Sequence[CarImage] = None) -> List[Car]:
    """
    指定枚数のゲーム用カードを生成

    categories を指定した場合はそのカテゴリからのみ出題する。
    画像が存在しないカテゴリは出題対象から除外される。
    """
    rng = rng or random
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    pool = [c for c in (categories or CAR_CATEGORIES) if images_by_category(c, catalog)]
    if not pool:
        return []

    cards = []
    for i in range(total_cards):
        category = rng.choice(pool)
        image = random_image_by_category(category, rng, catalog)
        cards.append(Car(
            id=f"{image.id}_{now_ms}_{i}",
            image_url=image_url(image),
            category=image.category,
        ))
    return cards


def generate_car_from_category(category: str, rng: random.Random = None,
                               now_ms: int = None) -> Optional[Car]:
    """特定のカテゴリから車を1台生成（デバッグ用）"""
    image = random_image_by_category(category, rng)
    if image is None:
        return None
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return Car(id=f"{image.id}_{now_ms}", image_url=image_url(image), category=image.category)


def catalog_stats(catalog: Sequence[CarImage] = None) -> Dict[str, object]:
    """全車種の統計情報を取得"""
    catalog = CAR_IMAGE_DATABASE if catalog is None else catalog
    stats = {category: 0 for category in CAR_CATEGORIES}
    for image in catalog:
        stats[image.category] = stats.get(image.category, 0) + 1
    return {"total_images": len(catalog), "category_stats": stats}


def check_image_files(images_dir: str, catalog: Sequence[CarImage] = None) -> Dict[str, List[str]]:
    """画像ファイルの存在確認"""
    catalog = CAR_IMAGE_DATABASE if catalog is None else catalog
    existing, missing = [], []
    for image in catalog:
        if os.path.exists(os.path.join(images_dir, image.file_name)):
            existing.append(image.file_name)
        else:
            missing.append(image.file_name)
    return {"existing_files": existing, "missing_files": missing}
