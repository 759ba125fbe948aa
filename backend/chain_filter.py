# chain_filter.py
# Chain store detection. Japanese names match as plain substrings, English
# names need a word-bounded regex hit so "Dennis's Craft Bar" is not Denny's.

import re
from typing import List, Pattern, Tuple, TypeVar

from models import Venue

CHAIN_PATTERNS: List[Tuple[str, Pattern[str]]] = [
    (ja, re.compile(en, re.IGNORECASE))
    for ja, en in [
        # cafe chains
        ("スターバックス", r"\bStarbucks\b"),
        ("ドトール", r"\bDoutor\b"),
        ("タリーズ", r"\bTully'?s?\b"),
        ("コメダ", r"\bKomeda\b"),
        ("サンマルクカフェ", r"\bSt\. Marc Caf[eé]\b"),
        ("エクセルシオール", r"\bExcelsior Caff[eé]\b"),
        ("プロント", r"\bPRONTO\b"),
        ("ベローチェ", r"\bVeloce\b"),
        ("カフェ・ド・クリエ", r"\bCaf[eé] de Cri[eé]\b"),
        # fast food
        ("マクドナルド", r"\bMcDonald'?s?\b"),
        ("ケンタッキー", r"\bKFC\b"),
        ("モスバーガー", r"\bMos Burger\b"),
        ("ロッテリア", r"\bLotteria\b"),
        ("バーガーキング", r"\bBurger King\b"),
        ("ウェンディーズ", r"\bWendy'?s?\b"),
        ("サブウェイ", r"\bSubway\b"),
        ("フレッシュネスバーガー", r"\bFreshness Burger\b"),
        # family restaurants
        ("サイゼリヤ", r"\bSaizeriya\b"),
        ("ガスト", r"\bGusto\b"),
        ("ジョナサン", r"\bJonathan'?s\b"),
        ("デニーズ", r"\bDenny'?s?\b"),
        ("バーミヤン", r"\bBarmiyan\b"),
        ("ココス", r"\bCocos\b"),
        ("ロイヤルホスト", r"\bRoyal Host\b"),
        ("ジョイフル", r"\bJoyfull?\b"),
        ("ビッグボーイ", r"\bBig Boy\b"),
        # beef bowl / curry
        ("吉野家", r"\bYoshinoya\b"),
        ("すき家", r"\bSukiya\b"),
        ("松屋", r"\bMatsuya\b"),
        ("なか卯", r"\bNakau\b"),
        ("CoCo壱番屋", r"\bCoCo Ichibanya\b"),
        ("ココイチ", r"\bCoCo Ichi\b"),
        # conveyor belt sushi
        ("スシロー", r"\bSushiro\b"),
        ("くら寿司", r"\bKura Sushi\b"),
        ("はま寿司", r"\bHama Sushi\b"),
        ("かっぱ寿司", r"\bKappa Sushi\b"),
        # convenience stores
        ("セブンイレブン", r"\bSeven.?Eleven\b"),
        ("ファミリーマート", r"\bFamilyMart\b"),
        ("ローソン", r"\bLawson\b"),
        ("ミニストップ", r"\bMinistop\b"),
        # izakaya
        ("鳥貴族", r"\bTorikizoku\b"),
        ("ワタミ", r"\bWatami\b"),
        ("白木屋", r"\bShirokiya\b"),
        ("魚民", r"\bUotami\b"),
        ("笑笑", r"\bWarawara\b"),
        ("和民", r"\bWatami\b"),
        # ramen
        ("一蘭", r"\bIchiran\b"),
        ("一風堂", r"\bIppudo\b"),
        ("天下一品", r"\bTenkaippin\b"),
        ("幸楽苑", r"\bKourakuen\b"),
        ("日高屋", r"\bHidakaya\b"),
    ]
]

V = TypeVar("V", bound=Venue)


def is_chain_store(name: str) -> bool:
    return any(ja in name or en.search(name) for ja, en in CHAIN_PATTERNS)


def filter_chain_stores(venues: List[V]) -> List[V]:
    """Drop chain venues, keeping the provider's order."""
    return [v for v in venues if not is_chain_store(v.name)]
