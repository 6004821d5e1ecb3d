"""
Prompt templates shared by every inference backend.

All backends ask for the same JSON schema so one parser handles them all.
The model first writes its observations to ``analysis`` and only then
produces tags, which keeps small models from inventing subjects.
"""

SYSTEM_PROMPT = """あなたは写真の内容を分析し、構造化されたタグと説明文を作る画像分析の専門家です。

## ルール
1. 実際に写っている、または書かれているものだけをタグにする。推測や連想はしない。
2. タグと説明文は日本語で書く。
3. 各カテゴリ0〜3個、合計3〜7個のタグに絞る。
4. 同じ意味のタグは1つにまとめる（例: "猫" と "ネコ" はどちらか一方）。
5. "写真" や "画像" のような抽象的すぎるタグは使わない。
6. 出力は valid な JSON のみ。

## タグのカテゴリ
- objects: 具体的な被写体（人物、動物、料理、乗り物、建物 など）
- scene: 場所やシーン（飲食店、公園、オフィス、海岸 など）
- attributes: 色、状態、特徴（雪景色、手書き、ネオン など）
- mood: 雰囲気（にぎやか、静か、レトロ、モダン など）

## 出力形式
{"analysis": "観察結果", "tags": {"objects": [], "scene": [], "attributes": [], "mood": []}, "description": "1〜2文の説明"}"""

TEXT_PROMPT_TEMPLATE = """写真から読み取ったテキストをもとに、写真の内容を表すタグと説明文を作ってください。
テキストに書かれている情報だけを使い、書かれていない内容は推測しないでください。

## 手順
1. テキストが何についてのものかを analysis に書く
2. analysis に基づいてカテゴリ別にタグを作る
3. 1〜2文の説明文を書く

## テキスト
{text}

## 出力例
{{"analysis": "ラーメン店のメニュー。醤油ラーメンと餃子の価格が書かれている", "tags": {{"objects": ["メニュー", "ラーメン"], "scene": ["飲食店"], "attributes": ["和食"], "mood": []}}, "description": "ラーメン店のメニュー表"}}

## 出力（JSONのみ）:"""

IMAGE_PROMPT = """この写真を分析し、構造化されたタグと説明文を作ってください。

## 手順
1. 写真に何が写っているかを観察して analysis に書く
2. 観察結果に基づいてカテゴリ別にタグを作る（写っているものだけ）
3. 1〜2文の説明文を書く

## 出力例
{"analysis": "夕暮れの海岸。波打ち際に人が立ち、空が橙色に染まっている", "tags": {"objects": ["人物"], "scene": ["海岸"], "attributes": ["夕焼け"], "mood": ["静か"]}, "description": "夕焼けに染まる海岸に立つ人"}

## 出力（JSONのみ）:"""


def text_prompt(text: str) -> str:
    """Build the user prompt for extraction from recognized text."""
    return TEXT_PROMPT_TEMPLATE.format(text=text.strip())


def combined_prompt(user_prompt: str) -> str:
    """Fold the system prompt into a user prompt for runtimes without a system role."""
    return f"{SYSTEM_PROMPT}\n\n{user_prompt}"


def gemma_chat(user_prompt: str) -> str:
    """Wrap a prompt in the Gemma instruction-tuned chat template."""
    return (
        f"<start_of_turn>user\n{user_prompt}<end_of_turn>\n"
        "<start_of_turn>model\n"
    )
