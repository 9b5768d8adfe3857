from __future__ import annotations

from typing import Dict

# Spoken language -> transcription language code
LANGUAGE_MAPPING: Dict[str, str] = {
    "English": "en",
    "Hindi": "hi",
    "Tamil": "ta",
    "Telugu": "te",
    "Malayalam": "ml",
    "Spanish": "es",
    "French": "fr",
    "German": "de",
    "Chinese": "zh",
    "Japanese": "ja",
    "Arabic": "ar",
    "Russian": "ru",
}

GREETINGS: Dict[str, str] = {
    "English": "Hello! Let's find a good time for your visit.",
    "Hindi": "नमस्ते! आइए आपकी विज़िट के लिए सही समय चुनें।",
    "Tamil": "வணக்கம்! உங்கள் வருகைக்கு நல்ல நேரத்தைத் தேர்ந்தெடுப்போம்.",
    "Spanish": "¡Hola! Busquemos un buen momento para su visita.",
    "French": "Bonjour ! Trouvons un bon moment pour votre visite.",
    "German": "Hallo! Lassen Sie uns einen guten Termin für Ihren Besuch finden.",
}


def language_code(language: str | None) -> str:
    return LANGUAGE_MAPPING.get((language or "English").strip().title(), "en")


def greeting_for(language: str | None) -> str:
    return GREETINGS.get((language or "English").strip().title(), GREETINGS["English"])


# Client events the websocket transport does not accept (WebRTC only)
WEBRTC_ONLY_EVENTS = frozenset({"output_audio_buffer.clear"})

MAX_ITEM_ID_LEN = 32
