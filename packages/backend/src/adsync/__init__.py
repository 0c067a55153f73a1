"""adsync — marketplace listing sync backend.

The real-time side of the service: broker events about crawl progress and
AI processing results are relayed to the browser tabs watching them over
WebSockets.
"""

__version__ = "0.1.0"
