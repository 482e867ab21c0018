# User value: This file keeps subtitle timing and numbering intact so translated files still play in sync.
import os
import re
import unicodedata

from schemas.job_contract import ALLOWED_EXTENSIONS, CONTENT_TYPES

UPLOAD_PREFIX = "uploads/"
RESULT_PREFIX = "results/"

SRT_TIMESTAMP_RE = re.compile(
    r"^\s*\d{1,2}:\d{2}:\d{2}[,.]\d{3}\s*-->\s*\d{1,2}:\d{2}:\d{2}[,.]\d{3}",
    re.MULTILINE,
)
VTT_TIMESTAMP_RE = re.compile(
    r"^\s*(?:\d{1,2}:)?\d{2}:\d{2}\.\d{3}\s*-->\s*(?:\d{1,2}:)?\d{2}:\d{2}\.\d{3}",
    re.MULTILINE,
)
_FENCE_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*\s*\n(.*?)\n\s*```\s*$", re.DOTALL)

_FORMAT_RULES = {
    ".srt": [
        "The input is an SRT subtitle file.",
        "Keep every sequence number and every timestamp line (HH:MM:SS,mmm --> HH:MM:SS,mmm) exactly as they are.",
        "Keep the blank lines between cues and the number of cues.",
        "Translate ONLY the dialogue text lines.",
    ],
    ".vtt": [
        "The input is a WebVTT subtitle file.",
        "Keep the WEBVTT header, cue identifiers, timestamp lines and cue settings exactly as they are.",
        "Keep NOTE, STYLE and REGION blocks untouched.",
        "Translate ONLY the cue text lines.",
    ],
    ".txt": [
        "The input is plain text.",
        "Keep the line breaks and paragraph structure.",
    ],
}


class MalformedTranslation(ValueError):
    pass


def file_extension(name: str) -> str:
    _, ext = os.path.splitext(name or "")
    return ext.lower()


def is_allowed_filename(name: str) -> bool:
    return file_extension(name) in ALLOWED_EXTENSIONS


def content_type_for(name: str) -> str:
    return CONTENT_TYPES.get(file_extension(name), "text/plain")


def sanitize_filename(name: str) -> str:
    base = os.path.basename((name or "").replace("\\", "/"))
    stem, ext = os.path.splitext(base)
    stem = unicodedata.normalize("NFKC", stem)
    stem = re.sub(r"[^A-Za-z0-9._-]+", "_", stem).strip("._")
    if not stem:
        stem = "subtitles"
    return f"{stem[:120]}{ext.lower()}"


def build_upload_key(user_id: str, filename: str, epoch_ms: int) -> str:
    safe_user = re.sub(r"[^A-Za-z0-9_-]+", "_", str(user_id)) or "user"
    return f"{UPLOAD_PREFIX}{safe_user}/{int(epoch_ms)}_{sanitize_filename(filename)}"


def build_output_key(source_key: str, target_lang: str) -> str:
    """
    results/<user>/<ts>_<name>.<lang><ext> for uploads/<user>/<ts>_<name><ext>.

    One output per (source, language), so several target languages never collide.
    """
    key = source_key
    if key.startswith(UPLOAD_PREFIX):
        key = RESULT_PREFIX + key[len(UPLOAD_PREFIX):]
    else:
        key = RESULT_PREFIX + key.lstrip("/")
    stem, ext = os.path.splitext(key)
    return f"{stem}.{target_lang.lower()}{ext or '.txt'}"


def count_cues(text: str, ext: str) -> int:
    if ext == ".srt":
        return len(SRT_TIMESTAMP_RE.findall(text))
    if ext == ".vtt":
        return len(VTT_TIMESTAMP_RE.findall(text))
    return 0


def build_translation_prompt(content: str, *, target_lang: str, source_name: str) -> str:
    ext = file_extension(source_name) or ".txt"
    rules = _FORMAT_RULES.get(ext, _FORMAT_RULES[".txt"])

    prompt_parts = [
        "You are an expert subtitle translator.",
        f"Translate the provided content into the language with ISO 639-1 code '{target_lang}'.",
        "Detect the source language yourself.",
        "",
        "Rules:",
    ]
    prompt_parts.extend(f"{i}. {rule}" for i, rule in enumerate(rules, start=1))
    prompt_parts.extend(
        [
            f"{len(rules) + 1}. Output ONLY the translated file content. No explanations, no notes, no markdown fences.",
            "",
            "Content to translate:",
            "---",
            content,
            "---",
        ]
    )
    return "\n".join(prompt_parts)


def unwrap_reply(reply: str) -> str:
    text = (reply or "").strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1).strip()
    return text


def validate_translation(source: str, translated: str, *, source_name: str) -> str:
    """
    Return the cleaned translation or raise MalformedTranslation.

    Subtitle formats must keep their cue count; WebVTT must keep its header.
    """
    text = unwrap_reply(translated)
    if not text:
        raise MalformedTranslation("Engine returned an empty response")

    ext = file_extension(source_name)
    if ext == ".vtt" and not text.lstrip("\ufeff").startswith("WEBVTT"):
        raise MalformedTranslation("Translated WebVTT is missing its WEBVTT header")

    expected = count_cues(source, ext)
    if expected:
        got = count_cues(text, ext)
        if got != expected:
            raise MalformedTranslation(f"Translated file has {got} cues, source has {expected}")

    if not text.endswith("\n"):
        text += "\n"
    return text
