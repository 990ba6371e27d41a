from mealfinder.models import (
    Answer,
    CuisineGenre,
    Location,
    MealSource,
    Question,
    SpiceLevel,
    TimeOfDay,
    UserProfile,
)


QUESTION_SYSTEM_PROMPT = """
あなたは日本の食事推薦システムのエキスパートです。
ユーザーの好みを理解するための効果的な質問を1つ生成してください。
質問は自然で親しみやすい日本語で、はい/いいえで答えられる形式にしてください。
質問文のみを返してください。"""


RECOMMENDATION_SYSTEM_PROMPT = f"""
あなたは日本の食事推薦エキスパートです。ユーザーの回答に基づいて最適な食事を推薦してください。

回答は以下のJSON形式のオブジェクト1つだけで返してください:
{{
  "name": "料理名",
  "description": "料理の説明（50文字以内）",
  "cuisine_genre": "{'|'.join(CuisineGenre.values())}",
  "spice_level": "{'|'.join(SpiceLevel.values())}",
  "estimated_price": 価格（円）,
  "cooking_time_minutes": 調理時間（分）,
  "ingredients": ["材料1", "材料2"],
  "instructions": ["手順1", "手順2"],
  "meal_source": "{'|'.join(MealSource.values())}",
  "confidence_score": 0.8,
  "reasoning": "推薦理由"
}}"""


def _profile_lines(profile: UserProfile) -> str:
    genres = ", ".join(sorted(g.value for g in profile.preferred_genres))
    allergies = ", ".join(sorted(profile.allergies)) or "なし"
    return (
        "ユーザー情報:\n"
        f"- 好みのジャンル: {genres}\n"
        f"- アレルギー: {allergies}\n"
        f"- 辛さの好み: {profile.spice_preference.value}\n"
        f"- 予算: {profile.budget_range.value}"
    )


def question_prompt(
    profile: UserProfile,
    *,
    answer_count: int,
    time_of_day: TimeOfDay,
    location: Location | None = None,
) -> str:
    prompt = (
        "ユーザーの食事推薦のための質問を生成してください。\n\n"
        f"{_profile_lines(profile)}\n\n"
        f"時間帯: {time_of_day.value}"
    )
    if location is not None:
        prompt += f"\n場所: {location.label}"
    if answer_count > 0:
        prompt += f"\n\n過去の回答数: {answer_count}件"
    prompt += (
        "\n\n効果的な質問を1つ生成してください。"
        "質問は具体的で、ユーザーの食事選択に役立つものにしてください。"
    )
    return prompt


def recommendation_prompt(
    profile: UserProfile,
    answers: list[tuple[Answer, Question | None]],
    *,
    time_of_day: TimeOfDay,
    location: Location | None = None,
) -> str:
    prompt = (
        "食事推薦を生成してください。\n\n"
        f"{_profile_lines(profile)}\n\n"
        f"時間帯: {time_of_day.value}"
    )
    if location is not None:
        prompt += f"\n場所: {location.label}"
    if answers:
        prompt += "\n\n質問への回答:"
        for n, (answer, question) in enumerate(answers, start=1):
            text = answer.question_id if question is None else question.text
            reply = "はい" if answer.response else "いいえ"
            prompt += f"\n{n}. {text} → {reply}"
    prompt += (
        "\n\n上記の情報に基づいて、最適な食事を1つ推薦してください。"
        "料理は具体的で実現可能なものにしてください。"
    )
    return prompt

