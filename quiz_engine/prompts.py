"""
Prompt builder — one template per ExtractionTask.

Every template states the goal, shows the exact JSON shape expected back and
lists the task's constraints. parser.py is written against these shapes: a
change to a template's JSON example must be mirrored in the parser.
"""

from quiz_engine.schemas import ExtractionTask


# ─── Question extraction (image) ───────────────────────────────────────────────

QUESTION_EXTRACTION_PROMPT = """You are an expert at extracting TOEIC test questions from images.

Analyze this image and extract ALL questions and their answer choices. The image may contain:
1. Multiple questions with answer choices (A, B, C, D)
2. Answer keys or answer sheets
3. Reading passages with questions

For each question found, provide:
- Question number (if visible)
- The complete question text
- All answer choices (A, B, C, D)
- The correct answer (if it is marked)

OUTPUT FORMAT — respond with ONLY a valid JSON object, no markdown fencing, no explanation:
{{
  "questions": [
    {{
      "questionNumber": 1,
      "question": "What is the main topic of the passage?",
      "options": [
        "Option A text",
        "Option B text",
        "Option C text",
        "Option D text"
      ],
      "answer": "B"
    }}
  ],
  "type": "questions" | "answer_key" | "mixed"
}}

If this is an answer key image, return:
{{
  "questions": [
    {{"questionNumber": 101, "answer": "B"}},
    {{"questionNumber": 102, "answer": "C"}}
  ],
  "type": "answer_key"
}}

RULES:
1. Extract ALL questions/answers visible in the image
2. "answer" must be one of A, B, C, D
3. If text is unclear, make your best interpretation
4. If the image is blank or has no visible text, say so in plain words instead of inventing questions
5. Return ONLY the JSON object
"""


# ─── Answer-sheet extraction (image) ───────────────────────────────────────────

ANSWER_SHEET_PROMPT = """You are an expert at extracting answer keys from TOEIC test answer sheets.

Analyze this answer sheet image and extract ALL question numbers and their corresponding correct answers.

The answer sheet typically shows:
- Question numbers ({start_number}, {next_number}, ...)
- Corresponding answer letters (A, B, C, D)

OUTPUT FORMAT — respond with ONLY a valid JSON object, no markdown fencing, no explanation:
{{
  "questions": [
    {{"questionNumber": {start_number}, "answer": "B"}},
    {{"questionNumber": {next_number}, "answer": "C"}}
  ],
  "type": "answer_key"
}}

RULES:
1. Extract ALL visible question-answer pairs
2. If a question number is visible but the answer is unclear, use "A" as default
3. If the image is blank or has no visible text, say so in plain words
4. Return ONLY the JSON object
"""


# ─── Bulk reading-comprehension generation (text) ──────────────────────────────

READING_GENERATION_PROMPT = """You are an expert at creating authentic TOEIC Reading Comprehension test questions.

Generate exactly {count} TOEIC reading comprehension questions that match the real TOEIC test format.

1. Each question has a reading passage (150-300 words) on topics such as:
   - Business communications (emails, memos, letters)
   - Workplace announcements
   - Product descriptions
   - Travel and tourism
   - News articles, advertisements, instructions and notices

2. For each passage, create 2-4 questions testing main idea, detail, inference,
   vocabulary in context, or the purpose of the passage.

3. Each question must have exactly 4 answer choices (A, B, C, D)
4. One answer must be clearly correct; distractors plausible but incorrect

CRITICAL: You MUST generate exactly {count} questions. Do not stop early.

CRITICAL: Respond with ONLY valid JSON. No markdown, no code blocks, no explanations.

Return your response in this EXACT JSON format:
{{
  "questions": [
    {{
      "id": {start_id},
      "passage": "Full reading passage text here...",
      "question": "What is the main purpose of this passage?",
      "options": [
        "To announce a new product launch",
        "To request customer feedback",
        "To explain company policies",
        "To advertise a job opening"
      ],
      "answer": "A"
    }},
    {{
      "id": {second_id},
      "passage": "Same passage or new passage...",
      "question": "According to the passage, what should customers do?",
      "options": [
        "Contact customer service",
        "Visit the website",
        "Return the product",
        "Write a review"
      ],
      "answer": "B"
    }}
  ]
}}

Requirements:
- Questions are numbered sequentially starting from {start_id} (last id: {last_id})
- A passage may be shared across several questions
- Answers are one of: A, B, C, or D
- Generate EXACTLY {count} questions - no more, no less
- Escape all special characters in JSON strings (quotes, newlines, etc.)
- Do not include any text outside the JSON object
"""

JSON_MODE_SYSTEM_PROMPT = (
    "You are a helpful assistant designed to output JSON. "
    "Always respond with valid JSON format only, no additional text or explanations."
)


def build_question_extraction_prompt() -> str:
    return QUESTION_EXTRACTION_PROMPT.format()


def build_answer_sheet_prompt(start_number: int = 101) -> str:
    if start_number < 1:
        raise ValueError(f"start_number must be >= 1, got {start_number}")
    return ANSWER_SHEET_PROMPT.format(start_number=start_number, next_number=start_number + 1)


def build_reading_generation_prompt(count: int, start_id: int = 1) -> str:
    if count < 1:
        raise ValueError(f"count must be >= 1, got {count}")
    if start_id < 1:
        raise ValueError(f"start_id must be >= 1, got {start_id}")
    return READING_GENERATION_PROMPT.format(
        count=count,
        start_id=start_id,
        second_id=start_id + 1,
        last_id=start_id + count - 1,
    )


def build_prompt(task: ExtractionTask, **params) -> str:
    """
    Build the instruction text for a task.

    Params:
        ANSWER_SHEET_EXTRACTION: start_number (default 101)
        BULK_GENERATION:         count (required), start_id (default 1)
    """
    if task == ExtractionTask.QUESTION_EXTRACTION:
        return build_question_extraction_prompt()
    if task == ExtractionTask.ANSWER_SHEET_EXTRACTION:
        return build_answer_sheet_prompt(params.get("start_number", 101))
    if task == ExtractionTask.BULK_GENERATION:
        if "count" not in params:
            raise ValueError("bulk generation prompt requires 'count'")
        return build_reading_generation_prompt(params["count"], params.get("start_id", 1))
    raise ValueError(f"Unknown extraction task: {task}")


def max_tokens_for_batch(count: int) -> int:
    """Token budget for a generation batch: ~200 tokens per question, capped at 16k."""
    return min(16000, max(count, 1) * 200)
