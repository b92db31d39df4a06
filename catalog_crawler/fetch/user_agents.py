"""Browser user-agent pool. One identity is drawn at random per request."""
import random
from typing import Optional

_CHROME_WINDOWS = [
    f"Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{v}.0.0.0 Safari/537.36"
    for v in (118, 119, 120, 121, 122)
]
_CHROME_MACOS = [
    f"Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{v}.0.0.0 Safari/537.36"
    for v in (119, 120, 121)
]
_FIREFOX = [
    f"Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:{v}.0) Gecko/20100101 Firefox/{v}.0"
    for v in (119, 120, 121)
] + [
    f"Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:{v}.0) Gecko/20100101 Firefox/{v}.0"
    for v in (120, 121)
]
_SAFARI = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1",
]
_EDGE = [
    f"Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{v}.0.0.0 Safari/537.36 Edg/{v}.0.0.0"
    for v in (120, 121)
]

USER_AGENTS: tuple[str, ...] = tuple(_CHROME_WINDOWS + _CHROME_MACOS + _FIREFOX + _SAFARI + _EDGE)


class UserAgentPool:
    """Random user-agent selection over a fixed pool."""

    def __init__(self, agents: tuple[str, ...] = USER_AGENTS, rng: Optional[random.Random] = None):
        if not agents:
            raise ValueError("User-agent pool must not be empty")
        self.agents = agents
        self._rng = rng or random.Random()

    def pick(self) -> str:
        return self._rng.choice(self.agents)
