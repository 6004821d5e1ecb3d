"""
Tag taxonomy for automatic photo tagging.

This module defines the canonical tags produced by the tagging pipeline.
Tags are organized into the same categories the inference prompts ask for
(objects, scene, attributes, mood) plus a context category for tags derived
from EXIF data (season, time of day). Each tag lists the cross-lingual and
orthographic variants that should collapse onto it, which is what the
normalizer uses as its synonym table.

Canonical names are Japanese, matching the language the prompts request;
English words and kana spellings are synonyms.

Example:
    Fold a variant onto its canonical tag:
        >>> taxonomy = TagTaxonomy()
        >>> taxonomy.canonical_for("Cat")
        '猫'

    Find tags by category:
        >>> [t.name for t in taxonomy.get_tags_by_category(TagCategory.CONTEXT)][:4]
        ['春', '夏', '秋', '冬']
"""

import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set


def term_key(term: str) -> str:
    """Case- and width-insensitive lookup key for a tag or synonym."""
    return " ".join(unicodedata.normalize("NFKC", term).lower().split())


class TagCategory(str, Enum):
    """Categories for organizing tags.

    - OBJECTS: concrete subjects (people, animals, food, vehicles)
    - SCENE: type of place (restaurant, park, beach)
    - ATTRIBUTES: colors, states, features (red, snow, handwritten)
    - MOOD: atmosphere (lively, quiet, retro)
    - CONTEXT: capture context derived from EXIF (season, time of day)
    """

    OBJECTS = "objects"
    SCENE = "scene"
    ATTRIBUTES = "attributes"
    MOOD = "mood"
    CONTEXT = "context"


@dataclass
class TagDefinition:
    """Definition of a single canonical tag.

    Attributes:
        id: Unique identifier for the tag
        name: Canonical tag name (already normalized)
        category: Category this tag belongs to
        parent_id: ID of parent tag (None for root tags)
        synonyms: Variants that fold onto this tag
        description: What this tag represents
    """

    id: int
    name: str
    category: TagCategory
    parent_id: Optional[int] = None
    synonyms: Set[str] = field(default_factory=set)
    description: str = ""


class TagTaxonomy:
    """Canonical tag set with synonym folding.

    Example:
        >>> taxonomy = TagTaxonomy()
        >>> taxonomy.get_tag_by_name("猫").category
        <TagCategory.OBJECTS: 'objects'>
        >>> [t.name for t in taxonomy.find_tags_by_synonym("kitten")]
        ['猫']
    """

    def __init__(self) -> None:
        """Initialize the taxonomy with predefined tags."""
        self._tags: Dict[int, TagDefinition] = {}
        self._name_to_tag: Dict[str, TagDefinition] = {}
        self._synonym_to_tags: Dict[str, List[TagDefinition]] = {}
        self._category_to_tags: Dict[TagCategory, List[TagDefinition]] = {}
        self._children_map: Dict[int, List[TagDefinition]] = {}

        self._build_taxonomy()
        self._build_indexes()

    def _build_taxonomy(self) -> None:
        """Define all canonical tags with their synonyms."""
        O, S, A, M, C = (
            TagCategory.OBJECTS,
            TagCategory.SCENE,
            TagCategory.ATTRIBUTES,
            TagCategory.MOOD,
            TagCategory.CONTEXT,
        )
        tags = [
            # Objects: people (1-4)
            TagDefinition(1, "人物", O, None, {"person", "people", "human", "ひと", "人"}),
            TagDefinition(2, "子供", O, 1, {"child", "children", "kid", "kids", "こども", "子ども"}),
            TagDefinition(3, "家族", O, 1, {"family", "かぞく"}),
            TagDefinition(4, "自撮り", O, 1, {"selfie", "セルフィー"}),
            # Objects: animals (10-14)
            TagDefinition(10, "動物", O, None, {"animal", "animals", "どうぶつ"}),
            TagDefinition(11, "猫", O, 10, {"cat", "cats", "kitten", "ネコ", "ねこ"}),
            TagDefinition(12, "犬", O, 10, {"dog", "dogs", "puppy", "イヌ", "いぬ"}),
            TagDefinition(13, "鳥", O, 10, {"bird", "birds", "トリ", "とり"}),
            TagDefinition(14, "魚", O, 10, {"fish", "サカナ", "さかな"}),
            # Objects: food (20-25)
            TagDefinition(20, "料理", O, None, {"food", "dish", "meal", "りょうり"}),
            TagDefinition(21, "ラーメン", O, 20, {"ramen", "らーめん", "拉麺"}),
            TagDefinition(22, "寿司", O, 20, {"sushi", "すし", "スシ", "鮨"}),
            TagDefinition(23, "ケーキ", O, 20, {"cake", "けーき"}),
            TagDefinition(24, "コーヒー", O, 20, {"coffee", "珈琲", "こーひー"}),
            TagDefinition(25, "メニュー", O, 20, {"menu", "めにゅー", "献立"}),
            # Objects: things (30-36)
            TagDefinition(30, "車", O, None, {"car", "cars", "automobile", "くるま", "クルマ", "自動車"}),
            TagDefinition(31, "電車", O, None, {"train", "でんしゃ", "列車"}),
            TagDefinition(32, "自転車", O, None, {"bicycle", "bike", "じてんしゃ"}),
            TagDefinition(33, "建物", O, None, {"building", "architecture", "たてもの", "建築"}),
            TagDefinition(34, "花", O, None, {"flower", "flowers", "はな", "ハナ"}),
            TagDefinition(35, "本", O, None, {"book", "books", "ほん", "書籍"}),
            TagDefinition(36, "ポスター", O, None, {"poster", "ぽすたー"}),
            TagDefinition(37, "看板", O, None, {"signboard", "sign", "かんばん"}),
            # Scene (40-49)
            TagDefinition(40, "海", S, None, {"sea", "ocean", "うみ"}),
            TagDefinition(41, "海岸", S, 40, {"beach", "coast", "shore", "砂浜", "ビーチ"}),
            TagDefinition(42, "山", S, None, {"mountain", "mountains", "やま"}),
            TagDefinition(43, "公園", S, None, {"park", "こうえん"}),
            TagDefinition(44, "街中", S, None, {"city", "street", "downtown", "まちなか", "街"}),
            TagDefinition(45, "飲食店", S, None, {"restaurant", "cafe", "レストラン", "カフェ"}),
            TagDefinition(46, "室内", S, None, {"indoor", "indoors", "屋内"}),
            TagDefinition(47, "屋外", S, None, {"outdoor", "outdoors", "野外"}),
            TagDefinition(48, "オフィス", S, None, {"office", "職場", "おふぃす"}),
            # Attributes (50-56)
            TagDefinition(50, "夕焼け", A, None, {"sunset", "夕日", "ゆうやけ"}),
            TagDefinition(51, "夜景", A, None, {"night view", "nightscape", "やけい"}),
            TagDefinition(52, "雪景色", A, None, {"snow", "snowscape", "雪"}),
            TagDefinition(53, "手書き", A, None, {"handwritten", "handwriting", "てがき"}),
            TagDefinition(54, "ネオン", A, None, {"neon", "ねおん"}),
            TagDefinition(55, "和食", A, None, {"japanese food", "washoku", "日本食"}),
            TagDefinition(56, "モノクロ", A, None, {"monochrome", "black and white", "白黒"}),
            # Mood (60-64)
            TagDefinition(60, "にぎやか", M, None, {"lively", "busy", "賑やか"}),
            TagDefinition(61, "静か", M, None, {"quiet", "calm", "しずか", "静寂"}),
            TagDefinition(62, "レトロ", M, None, {"retro", "vintage", "れとろ"}),
            TagDefinition(63, "モダン", M, None, {"modern", "もだん"}),
            TagDefinition(64, "ロマンチック", M, None, {"romantic", "ロマンティック"}),
            # Context: seasons (70-73)
            TagDefinition(70, "春", C, None, {"spring", "はる"}, "Captured March to May"),
            TagDefinition(71, "夏", C, None, {"summer", "なつ"}, "Captured June to August"),
            TagDefinition(72, "秋", C, None, {"autumn", "fall", "あき"}, "Captured September to November"),
            TagDefinition(73, "冬", C, None, {"winter", "ふゆ"}, "Captured December to February"),
            # Context: time of day (80-83)
            TagDefinition(80, "早朝", C, None, {"dawn", "early morning", "そうちょう"}, "Captured 4:00-6:59"),
            TagDefinition(81, "朝", C, None, {"morning", "あさ"}, "Captured 7:00-9:59"),
            TagDefinition(82, "夕方", C, None, {"evening", "dusk", "ゆうがた"}, "Captured 16:00-18:59"),
            TagDefinition(83, "夜", C, None, {"night", "よる"}, "Captured 19:00-3:59"),
        ]

        for tag in tags:
            self._tags[tag.id] = tag
            self._name_to_tag[term_key(tag.name)] = tag

    def _build_indexes(self) -> None:
        """Build synonym, category and children indexes."""
        for tag in self._tags.values():
            for synonym in tag.synonyms:
                self._synonym_to_tags.setdefault(term_key(synonym), []).append(tag)

        for tag in self._tags.values():
            self._category_to_tags.setdefault(tag.category, []).append(tag)

        for tag in self._tags.values():
            if tag.parent_id is not None:
                self._children_map.setdefault(tag.parent_id, []).append(tag)

    def get_all_tags(self) -> List[TagDefinition]:
        """Get all tags in the taxonomy, sorted by ID."""
        return sorted(self._tags.values(), key=lambda t: t.id)

    def get_tag_by_id(self, tag_id: int) -> Optional[TagDefinition]:
        return self._tags.get(tag_id)

    def get_tag_by_name(self, name: str) -> Optional[TagDefinition]:
        """Get tag by canonical name (case- and width-insensitive)."""
        return self._name_to_tag.get(term_key(name))

    def get_tags_by_category(self, category: TagCategory) -> List[TagDefinition]:
        return self._category_to_tags.get(category, [])

    def find_tags_by_synonym(self, synonym: str) -> List[TagDefinition]:
        """Find tags listing this synonym (case-insensitive)."""
        return self._synonym_to_tags.get(term_key(synonym), [])

    def get_children(self, parent_id: int) -> List[TagDefinition]:
        return self._children_map.get(parent_id, [])

    def get_tag_path(self, tag_id: int) -> List[TagDefinition]:
        """Get full hierarchical path from root to tag.

        Example:
            >>> taxonomy = TagTaxonomy()
            >>> [t.name for t in taxonomy.get_tag_path(11)]
            ['動物', '猫']
        """
        path: List[TagDefinition] = []
        current = self._tags.get(tag_id)

        while current is not None:
            path.insert(0, current)
            if current.parent_id is None:
                break
            current = self._tags.get(current.parent_id)

        return path

    def canonical_for(self, term: str) -> Optional[str]:
        """Return the canonical tag name for a tag or synonym, if known."""
        tag = self.get_tag_by_name(term)
        if tag is not None:
            return tag.name
        matches = self.find_tags_by_synonym(term)
        return matches[0].name if matches else None

    def synonym_table(self) -> Dict[str, str]:
        """Build a lookup-key to canonical-name table.

        Canonical names map to themselves so folding is idempotent.
        """
        table: Dict[str, str] = {}
        for tag in self.get_all_tags():
            for synonym in sorted(tag.synonyms):
                table.setdefault(term_key(synonym), tag.name)
        for tag in self.get_all_tags():
            table[term_key(tag.name)] = tag.name
        return table
