"""
Market assistant: chat about current alerts and a periodically refreshed
daily insight, through an OpenAI-compatible chat completions endpoint.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from openai import APIError, AsyncOpenAI, RateLimitError

from market_alerts.config import AISettings
from market_alerts.core.errors import AssistantConfigError
from market_alerts.core.models import Alert, Insight
from market_alerts.logger import get_logger

logger = get_logger(__name__)

MODES: Dict[str, Dict[str, Any]] = {
    "technical": {
        "system_prompt": (
            "You are a technical analysis expert. Focus on price action, volume, chart patterns, "
            "indicators, and short-term trading opportunities. Be concise and actionable."
        ),
        "temperature": 0.7,
    },
    "fundamental": {
        "system_prompt": (
            "You are a fundamental analysis expert. Focus on company financials, earnings, "
            "business models, competitive advantages, and long-term investment value. Be thorough but clear."
        ),
        "temperature": 0.8,
    },
    "sentiment": {
        "system_prompt": (
            "You are a market sentiment analyst. Focus on market psychology, news impact, "
            "social trends, and crowd behavior. Explain the 'why' behind movements."
        ),
        "temperature": 0.9,
    },
}

INSIGHT_SYSTEM_PROMPT = "Market analyst providing concise insights. Focus on the most impactful news of the day."
INSIGHT_PROMPT = (
    "Generate for US market traders:\n"
    "1. THE TOP news story of the day affecting markets (max 2 lines, be specific)\n"
    "2. ONE inspirational trading quote from Warren Buffett, Jesse Livermore, Paul Tudor Jones, "
    "George Soros, or Ray Dalio\n\n"
    "Date: {date}\n"
    'Format: NEWS: [text]\nQUOTE: "[quote]" - [Author]'
)

RATE_LIMIT_REPLY = "I apologize, but I've reached my rate limit. Please try again in a moment."
ERROR_REPLY = "I apologize, but I encountered an error. Please try rephrasing your question."
EMPTY_REPLY = "I apologize, but I could not generate a response."

FALLBACK_NEWS = "Stay alert to the market and manage your risk."
FALLBACK_QUOTE = "\"Risk comes from not knowing what you're doing.\" - Warren Buffett"

_SPANISH_RE = re.compile(
    r"\b(qué|cómo|por qué|cuándo|dónde|quién|cuál|dame|dime|explica|análisis)\b", re.IGNORECASE
)
_NEWS_RE = re.compile(r"NEWS:\s*(.+?)(?=\nQUOTE:|$)", re.DOTALL)
_QUOTE_RE = re.compile(r"QUOTE:\s*(.+)")


def detect_language(message: str) -> str:
    return "es" if _SPANISH_RE.search(message) else "en"


def format_alert_context(alerts: Iterable[Alert]) -> str:
    lines = [
        f"{a.symbol}: {'+' if a.change_percent > 0 else ''}{a.change_percent:.2f}% at ${a.price:.2f}"
        for a in alerts
    ]
    if not lines:
        return ""
    return "\n\nCurrent market alerts:\n" + "\n".join(lines)


def parse_insight(text: str, timestamp: datetime) -> Insight:
    news = _NEWS_RE.search(text)
    quote = _QUOTE_RE.search(text)
    return Insight(
        news=news.group(1).strip() if news else "Market analysis in progress...",
        quote=quote.group(1).strip() if quote else '"The trend is your friend." - Trading Wisdom',
        timestamp=timestamp,
    )


class MarketAssistant:
    def __init__(
        self,
        settings: AISettings,
        client: Optional[AsyncOpenAI] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings = settings
        self._client = client
        self._clock = clock
        self._insight: Optional[Insight] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = self.settings.api_key
            if not api_key:
                raise AssistantConfigError(
                    f"{self.settings.api_key_env} environment variable is missing."
                )
            self._client = AsyncOpenAI(api_key=api_key, base_url=self.settings.base_url)
        return self._client

    async def chat(self, message: str, mode: str = "technical", context: Iterable[Alert] = ()) -> str:
        """Answer a user question; upstream failures come back as apology text."""
        client = self._get_client()
        mode_config = MODES.get(mode, MODES["technical"])
        system_prompt = mode_config["system_prompt"] + format_alert_context(context)
        if detect_language(message) == "es":
            system_prompt += "\n\nRespond in Spanish."

        logger.info("Generating %s response for: %r", mode, message[:50])
        try:
            completion = await client.chat.completions.create(
                model=self.settings.chat_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": message},
                ],
                temperature=mode_config["temperature"],
                max_tokens=self.settings.max_tokens,
                top_p=1,
            )
        except RateLimitError:
            logger.warning("AI provider rate limit hit")
            return RATE_LIMIT_REPLY
        except APIError as e:
            logger.error("Error generating AI response: %s", e)
            return ERROR_REPLY

        content = completion.choices[0].message.content if completion.choices else None
        return content or EMPTY_REPLY

    async def _generate_insight(self) -> Insight:
        now = self._clock()
        try:
            client = self._get_client()
            completion = await client.chat.completions.create(
                model=self.settings.insight_model,
                messages=[
                    {"role": "system", "content": INSIGHT_SYSTEM_PROMPT},
                    {"role": "user", "content": INSIGHT_PROMPT.format(date=now.strftime("%A, %B %d, %Y"))},
                ],
                temperature=0.7,
                max_tokens=self.settings.insight_max_tokens,
            )
        except (AssistantConfigError, APIError) as e:
            logger.error("Error generating insight: %s", e)
            return Insight(news=FALLBACK_NEWS, quote=FALLBACK_QUOTE, timestamp=now)
        text = completion.choices[0].message.content if completion.choices else ""
        return parse_insight(text or "", now)

    async def current_insight(self) -> Insight:
        """Cached insight, regenerated once it is older than insight_ttl_minutes."""
        ttl = timedelta(minutes=self.settings.insight_ttl_minutes)
        if self._insight is None or self._clock() - self._insight.timestamp > ttl:
            self._insight = await self._generate_insight()
            logger.info("Daily insight updated")
        return self._insight

    async def refresh_insight(self) -> Insight:
        self._insight = await self._generate_insight()
        logger.info("Daily insight refreshed manually")
        return self._insight

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
