from __future__ import annotations

import json
import math
from typing import Any

from radio.tts_types import DEFAULT_GUEST_VOICE, DEFAULT_HOST_VOICE, GUEST_VOICES

AVERAGE_TURN_DURATION_SECONDS = 13.033141

LANGUAGE_LABELS = {
    "en": "English",
    "ja": "日本語",
    "ko": "한국어",
}


def minutes_to_turns(minute: float) -> int:
    return int(math.floor((float(minute) * 60.0) / AVERAGE_TURN_DURATION_SECONDS))


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


PROGRAM_FEATURES = """
# Characteristics of desirable programs
- Covering the details of the paper
- Explaining technical terms in detail, including academic definitions
- Accurately reflecting the content of the paper

# Characteristics of inappropriate programs
- Omitting content from the paper
- Including content that could be misleading
- Including topics unrelated to the content of the paper
- Using technical terms without explanations
- The host does not properly cite the statements of researchers
- Including content unrelated to the paper, such as commercials and previews of upcoming programs
- Including information not in the paper, such as personal episodes of researchers
"""

SECTION_SCHEMA = {
    "type": "object",
    "description": "A section that makes up the program",
    "properties": {
        "title": {"type": "string", "description": "Section title"},
        "conversationTurns": {"type": "number", "description": "Number of conversation turns in this section"},
        "contents": {"type": "array", "items": {"type": "string", "description": "Contents of the section"}},
    },
    "required": ["title", "conversationTurns", "contents"],
}

OUTLINE_SCHEMA = {
    "type": "object",
    "properties": {
        "totalTurns": {
            "type": "number",
            "minimum": 1,
            "description": "Total number of turns. Fit the number of turns to the requested program length",
        },
        "program": {"type": "array", "items": SECTION_SCHEMA, "description": "List of sections of the program"},
    },
    "required": ["totalTurns", "program"],
}

OUTLINE_EXAMPLE = {
    "totalTurns": 100,
    "program": [
        {
            "title": "Introduction and Overview of the Program",
            "conversationTurns": 12,
            "contents": [
                "Introduction to the topic.",
                "Summary of the research paper.",
                "Overview of what will be covered in the episode.",
            ],
        },
        {
            "title": "Background and the importance of this research",
            "conversationTurns": 16,
            "contents": [
                "Historical context and background of the study.",
                "Explanation of key concepts.",
                "Explanation of the importance of the study.",
            ],
        },
        {
            "title": "Main Related Work",
            "conversationTurns": 14,
            "contents": [
                "An overview of the field where related research has been discussed.",
                "Limitations of previous studies.",
                "How this study builds upon previous research.",
            ],
        },
        {
            "title": "Methods",
            "conversationTurns": 12,
            "contents": [
                "Research methods used in this study.",
                "Details of data collection.",
                "Methods of data analysis.",
            ],
        },
        {
            "title": "Results",
            "conversationTurns": 12,
            "contents": [
                "Presentation of the core findings.",
                "In-depth analysis of the main results.",
            ],
        },
        {
            "title": "Discussion",
            "conversationTurns": 12,
            "contents": [
                "Interpretation of the results.",
                "Comparison with related work.",
            ],
        },
        {
            "title": "Conclusions and significance of the research",
            "conversationTurns": 12,
            "contents": [
                "Summary of the findings and contributions.",
                "Limitations of the study and future work.",
            ],
        },
    ],
}

_OUTLINE_INSTRUCTIONS = {
    "en": """
Think slowly and carefully.
# Objective
You are a radio program editor of an educational program. You design the sections of a program that expertly explains the content of a PDF academic article.

# Input
Length of the program (number of turns)

# Output
The sections of a radio program. Devise sections that reflect the structure of the PDF article and output the title and contents of each section.

## Requirements for output
- Section titles follow the section titles of the paper.
- A section contains at least 8 turns.
- If a section would have fewer than 8 turns, merge it with another section.
- A section contains at most 12 turns.
- Output in JSON format.

All outputs should be in English.
""",
    "ja": """
ゆっくり丁寧に思考してください。
# 目的
あなたはラジオの教育番組の放送作家です．PDFの学術論文の内容を専門的に解説する番組の章立てを考えます．

# 入力
番組の長さ（ターンの数）

# 出力
研究を解説するラジオ番組の構成．PDFの論文の特徴を反映するように，コーナーを考案し，各コーナーのタイトルと内容を出力する．

## 出力の条件
- セクションのタイトルは論文の章立てに即している．
- セクションのタイトルは日本語で出力する．
- 1つのセクションには最低8ターンが含まれる．
- 8ターン以下になる場合は，他のセクションと統合する．
- 1つのセクションは最大12ターンまでにする．
- json形式で出力する．

すべての出力は日本語で行いなさい．
""",
    "ko": """
천천히 신중하게 사고해 주세요.
# 목적
당신은 교육방송 라디오의 방송작가입니다. PDF형식의 학술논문의 내용을 전문적으로 해설하는 방송의 구성을 생각합니다.

# 입력
방송의 길이 (턴 수)

# 출력
연구를 해설하는 라디오 방송의 구성. 논문의 특징을 반영할 수 있도록 코너를 고안하여, 각 코너의 제목과 내용을 출력함.

## 출력 조건
- 섹션의 제목은 논문의 목차 구성에 들어맞을 것.
- 섹션의 제목은 한국어로 출력할 것.
- 한 개의 섹션에는 최저 8개의 턴이 포함될 것.
- 8개 이하가 될 경우에는 다른 섹션과 통합할 것.
- 1개의 섹션은 최대 12턴까지로 할 것.
- JSON형식으로 출력할 것.

모든 출력은 한국어로 진행해 주세요.
""",
}


def outline_instructions(language: str) -> str:
    label = LANGUAGE_LABELS.get(language, LANGUAGE_LABELS["en"])
    return f"""
{_OUTLINE_INSTRUCTIONS.get(language, _OUTLINE_INSTRUCTIONS["en"])}

Write the section titles and contents in {label}.

## Schema of the output
{_dump(OUTLINE_SCHEMA)}

## Output example
Input:
100 turns

Output:
{_dump(OUTLINE_EXAMPLE)}

{PROGRAM_FEATURES}
"""


def outline_request(total_turns: int) -> str:
    return (
        f"{total_turns} turns.\n"
        f"Please make sections to structure the podcast program in {total_turns} turns.\n"
        f'"{total_turns} turns" means the performers speak {total_turns} times in total.'
    )


EXTRACTION_SCHEMA = {
    "type": "object",
    "properties": {"result": {"type": "string", "description": "Extracted information"}},
    "required": ["result"],
}

EXTRACTOR_INSTRUCTIONS = f"""
# Objective
You are an information retrieval assistant. Extract the information the user asks for from the PDF academic article and return the result in JSON format.

# Input
Keyword of the information to look up

# Output
The information related to the keyword.
Output JSON only. Never output any text other than JSON.

## Schema of the output
{_dump(EXTRACTION_SCHEMA)}

## Output example
Input:
First author of the paper

Output:
{_dump({"result": "Ron Wakkary"})}

## Output example 2
Input:
Title of the paper

Output:
{_dump({"result": "Designing for autonomous things that act together with people"})}
"""

AUTHOR_TASK = "Output the first author of the paper as JSON."
TITLE_TASK = "Output the title of the paper as JSON."
VOICE_TASK = (
    "Read the document and choose the voice model for the paper author who appears "
    "as a guest in the podcast. Output the model name as JSON. "
    f"Voice models: {_dump(list(GUEST_VOICES))}"
)
EXTRACTION_TASKS = (AUTHOR_TASK, TITLE_TASK, VOICE_TASK)

TURN_SCHEMA = {
    "type": "object",
    "properties": {
        "speaker": {"type": "string", "description": "Name of the speaker"},
        "voice": {"type": "string", "enum": ["alloy", "echo", "fable", "onyx", "nova", "shimmer"]},
        "text": {"type": "string", "description": "Utterance"},
    },
    "required": ["speaker", "voice", "text"],
}

SCRIPT_INPUT_SCHEMA = {
    "type": "object",
    "description": (
        "The input to the script writer. author: the author of the paper to be introduced. "
        "currentSection: the section to write the script for. "
        "nextSection: the following section, for reference only. Never write the script of the next section."
    ),
    "properties": {
        "author": {"type": "string"},
        "currentSection": SECTION_SCHEMA,
        "nextSection": SECTION_SCHEMA,
    },
    "required": ["author", "currentSection"],
}

SCRIPT_OUTPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "description": "Title of the current section"},
        "nextTitle": {"type": "string", "description": "Title of the next section"},
        "conversationTurns": {"type": "number", "description": "Number of conversation turns in this section"},
        "script": {"type": "array", "items": TURN_SCHEMA, "description": "Script of the section"},
    },
    "required": ["title", "conversationTurns", "script"],
}

_SCRIPT_INSTRUCTIONS = {
    "en": """
Think slowly and carefully.
# Objective
You are a script writer of an educational program. You write the script of an episode that expertly explains the content of a PDF academic article.

# Personality settings
- A professional radio personality.
- Acts as a listener who makes the author feel comfortable talking.
- Reacts to the conversation to make it natural.
- Rephrases the author's statements to emphasize the content.
- Gentle and polite tone, explains technical terms in an easy-to-understand way.
- Clear and logical tone. Leads the discussion while keeping it easy to follow.

# Researcher settings
- The researcher explains the content of the paper in an easy-to-understand way.

All outputs should be in English.
""",
    "ja": """
ゆっくり丁寧に思考してください。
# 役割
あなたはラジオの教育番組の放送作家です．PDFの学術論文の内容を専門的に解説する番組の台本を書きます．

# パーソナリティの設定
・ラジオパーソナリティのプロフェッショナルです。
・論文の著者が気持ちよく話せるような聞き役として振る舞います。
・相槌を打つことで会話を自然なものにします
・研究者の発言内容を言い換えることで内容を強調します
・穏やかで丁寧なトーン、専門用語をわかりやすく解説する。
・クリアで、論理的なトーン。議論をリードしつつ、リスナーが理解しやすいように工夫する。

# 研究者の設定
・研究者は論文の内容をわかりやすく説明する研究者です

出力はすべて日本語で行ってください。
""",
    "ko": """
천천히 신중하게 사고해 주세요.
# 역할
당신은 교육방송 라디오의 방송작가입니다. PDF형식의 학술논문의 내용을 전문적으로 해설하는 방송의 대본을 작성합니다.

# 퍼스널리티의 설정
・라디오 퍼스널리티의 프로페셔널입니다.
・논문의 저자가 기분 좋게 이야기할 수 있도록 하는 역할을 수행합니다.
・대화를 자연스럽게 만들기 위해 반응을 합니다.
・연구자의 발언 내용을 강조하기 위해 다시 말합니다.
・온화하고 정중한 톤, 전문 용어를 이해하기 쉽게 설명합니다.
・명확하고 논리적인 톤. 청취자가 이해하기 쉽도록 노력합니다.

모든 출력은 한국어로 진행해 주세요.
""",
}


def _script_examples(host: str, guest: str) -> list[tuple[dict[str, Any], dict[str, Any]]]:
    sections = OUTLINE_EXAMPLE["program"]
    intro_in = {"author": "John Doe", "currentSection": sections[0], "nextSection": sections[1]}
    intro_out = {
        "title": sections[0]["title"],
        "nextTitle": sections[1]["title"],
        "conversationTurns": 12,
        "script": [
            {
                "speaker": host,
                "voice": host,
                "text": "Welcome to the show. Today we have John Doe with us to talk about his latest research. John, thank you for joining us.",
            },
            {"speaker": "John Doe", "voice": guest, "text": "Thank you for having me."},
            {
                "speaker": host,
                "voice": host,
                "text": "Let's start with an overview of your research. What is the main focus of your study?",
            },
        ],
    }
    middle_in = {"author": "John Doe", "currentSection": sections[2], "nextSection": sections[3]}
    middle_out = {
        "title": sections[2]["title"],
        "nextTitle": sections[3]["title"],
        "conversationTurns": 14,
        "script": [
            {"speaker": host, "voice": host, "text": "Let's move on to the work your study builds on."},
            {"speaker": "John Doe", "voice": guest, "text": "Yes, there is a long line of research in this area."},
        ],
    }
    end_in = {"author": "John Doe", "currentSection": sections[-1]}
    end_out = {
        "title": sections[-1]["title"],
        "conversationTurns": 12,
        "script": [
            {"speaker": "John Doe", "voice": guest, "text": "In conclusion, the results of the study suggest that..."},
            {
                "speaker": host,
                "voice": host,
                "text": "Thank you for joining us today. Our guest was John Doe.",
            },
        ],
    }
    return [(intro_in, intro_out), (middle_in, middle_out), (end_in, end_out)]


def script_instructions(
    language: str,
    *,
    host_voice: str = DEFAULT_HOST_VOICE,
    guest_voice: str = DEFAULT_GUEST_VOICE,
) -> str:
    label = LANGUAGE_LABELS.get(language, LANGUAGE_LABELS["en"])
    (intro_in, intro_out), (middle_in, middle_out), (end_in, end_out) = _script_examples(host_voice, guest_voice)
    return f"""
{_SCRIPT_INSTRUCTIONS.get(language, _SCRIPT_INSTRUCTIONS["en"])}

# Participants of the program
{host_voice} (voice: {host_voice}): Host
<author of the introduced paper, given in the input> (voice: {guest_voice}): Researcher

{PROGRAM_FEATURES}

# Input
JSON with the following schema:

{_dump(SCRIPT_INPUT_SCHEMA)}

# Output
- Output the script in JSON format.
- The language of the script is {label}.
- When translating a word from the original, include the original English word for important terms.

Output schema:
{_dump(SCRIPT_OUTPUT_SCHEMA)}

## Output example 1 (Introduction, not every element is included)
Input:
{_dump(intro_in)}
Output:
{_dump(intro_out)}

## Output example 2 (Middle of the program, not every element is included)
Input:
{_dump(middle_in)}
Output:
{_dump(middle_out)}

## Output example 3 (End of the program, not every element is included)
Input:
{_dump(end_in)}
Output:
{_dump(end_out)}
"""


JSON_FIXER_INSTRUCTIONS = """
# Role
JSON Fixer

# Instructions
Fix the JSON

# Input
Invalid JSON text

## Input example
```json
{"totalTurns":18,"program":[{"title":"Background","conversationTurns":6}{"title":"Method","conversationTurns":6"}]}}
```

# Output
Valid JSON text

## Output example
```json
{"totalTurns":18,"program":[{"title":"Background","conversationTurns":6},{"title":"Method","conversationTurns":6}]}
```
"""


def json_fixer_request(text: str) -> str:
    return "Fix the following JSON\n\n" + text
