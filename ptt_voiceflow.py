#!/usr/bin/env python3
"""
VoiceFlow - Dictate Anywhere

Hold a global hotkey, speak, and the transcript is typed into the focused window.

Usage:
    python ptt_voiceflow.py [options]

Environment Variables:
    DEEPGRAM_API_KEY           Deepgram API key (or store one with --set-key)
    VOICEFLOW_HOTKEY           Global hotkey, e.g. 'Ctrl+Shift+F9'
    VOICEFLOW_TRIGGER_MODE     'push_to_talk' or 'toggle'
    VOICEFLOW_TRANSCRIPTION    'batch' or 'stream'
    VOICEFLOW_OUTPUT_MODE      Output mode: 'type' or 'clipboard'
    VOICEFLOW_AUDIO_DEVICE     Audio input device index
    VOICEFLOW_LANGUAGE         Language code (e.g., 'en', 'de', or 'auto')
    VOICEFLOW_MODEL            Deepgram model (default 'nova-2')
    VOICEFLOW_VERBOSE          Enable verbose logging: '1' or 'true'
"""

from voiceflow.__main__ import main

if __name__ == "__main__":
    raise SystemExit(main())
