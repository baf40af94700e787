"""Telephony components for the voicemail call path.

SIP signalling comes from aiosipua; everything below it is ours: one UDP RTP
endpoint per call carrying G.711 u-law, the greeting player feeding it, and
the WAVE container codec used for greetings and recordings.
"""
