"""TwiML call-control documents.

Every piece of caller-facing text passes through ``escape_xml`` before it is
placed in a document.
"""

VOICE = "Polly.Joanna"
LANGUAGE = "en-US"

_XML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
}


def escape_xml(text) -> str:
    if not text:
        return ""
    return "".join(_XML_ESCAPES.get(ch, ch) for ch in str(text))


def say(text: str) -> str:
    return f'<Say voice="{VOICE}">{escape_xml(text)}</Say>'


def gather(action_url: str, prompt: str = "", timeout: int = 5) -> str:
    inner = say(prompt) if prompt else ""
    return (
        '<Gather input="speech" '
        f'action="{escape_xml(action_url)}" method="POST" '
        f'speechTimeout="auto" timeout="{timeout}" language="{LANGUAGE}">'
        f"{inner}</Gather>"
    )


def document(*verbs: str) -> str:
    return '<?xml version="1.0" encoding="UTF-8"?><Response>' + "".join(verbs) + "</Response>"


def gather_response(prompt: str, action_url: str, no_input: str, goodbye: str) -> str:
    """Speak ``prompt`` and collect one utterance; one retry, then hang up."""
    return document(
        gather(action_url, prompt, timeout=6),
        say(no_input),
        gather(action_url, timeout=5),
        say(goodbye),
        "<Hangup/>",
    )


def stream_response(stream_url: str, parameters: dict | None = None) -> str:
    """Open a bidirectional media stream to the relay endpoint."""
    params = "".join(
        f'<Parameter name="{escape_xml(k)}" value="{escape_xml(v)}" />'
        for k, v in (parameters or {}).items()
    )
    return document(f'<Connect><Stream url="{escape_xml(stream_url)}">{params}</Stream></Connect>')


def hangup_response(text: str) -> str:
    return document(say(text), "<Hangup/>")
