class Constants:
    ROLE_USER = "user"
    ROLE_ASSISTANT = "assistant"
    ROLE_SYSTEM = "system"
    ROLE_TOOL = "tool"
    ROLE_DEVELOPER = "developer"

    CONTENT_TEXT = "text"
    CONTENT_IMAGE = "image"
    CONTENT_TOOL_USE = "tool_use"
    CONTENT_TOOL_RESULT = "tool_result"
    CONTENT_THINKING = "thinking"
    CONTENT_REDACTED_THINKING = "redacted_thinking"

    TOOL_FUNCTION = "function"

    STOP_END_TURN = "end_turn"
    STOP_MAX_TOKENS = "max_tokens"
    STOP_TOOL_USE = "tool_use"

    EVENT_MESSAGE_START = "message_start"
    EVENT_MESSAGE_STOP = "message_stop"
    EVENT_MESSAGE_DELTA = "message_delta"
    EVENT_CONTENT_BLOCK_START = "content_block_start"
    EVENT_CONTENT_BLOCK_STOP = "content_block_stop"
    EVENT_CONTENT_BLOCK_DELTA = "content_block_delta"
    EVENT_PING = "ping"
    EVENT_ERROR = "error"

    DELTA_TEXT = "text_delta"
    DELTA_THINKING = "thinking_delta"
    DELTA_INPUT_JSON = "input_json_delta"

    # OpenAI finish_reason -> Anthropic stop_reason
    FINISH_TO_STOP = {
        "stop": STOP_END_TURN,
        "length": STOP_MAX_TOKENS,
        "tool_calls": STOP_TOOL_USE,
        "function_call": STOP_TOOL_USE,
        "content_filter": STOP_END_TURN,
    }

    # Request fields that ask for reasoning output on OpenAI-shaped endpoints
    REASONING_REQUEST_FIELDS = (
        "reasoning",
        "reasoning_effort",
        "thinking_budget",
        "include_thoughts",
    )

    # Anthropic extended thinking budget when ``budget_tokens`` is omitted
    DEFAULT_THINKING_BUDGET = 10000
    DEFAULT_ANTHROPIC_MAX_TOKENS = 4096
