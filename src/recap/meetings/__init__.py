"""Meeting pipeline module -- per-meeting audio, transcript and summary flow.

Provides the audio buffer store fed by the ingestion socket, the transcript
accumulator, the lifecycle manager that runs the transcription and summary
timers, the chat delivery sink, and the live event broadcaster.
"""
