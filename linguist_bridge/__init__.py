"""
Linguist bridge: real-time translation for a live multi-party call.

Ingress audio -> AudioRouter -> CaptureSession (streaming STT) ->
TurnScheduler -> translation -> synthesis -> egress playback.

- The bridge never transcribes its own synthesized output (bot identity frames
  are discarded before they reach a capture session).
- At most one Turn is in flight at a time, so translated audio never interleaves.
- All behavior is observable via structured events (observability.events).
"""
