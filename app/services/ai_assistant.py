"""
AI guidance for subscriptions: spending analysis, recommendations,
cancellation guides, support email templates and a chat assistant.

Backed by the OpenAI chat completions API. Every operation degrades to a
deterministic local answer when the API key is missing or a call fails, so
callers never have to handle AI errors.

Environment:
    - OPENAI_API_KEY: OpenAI API key
    - AI_MODEL: chat model name (default gpt-4o-mini)
"""
import json
import logging
import os
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from openai import OpenAI

from app.services.spending_analytics import to_monthly_amount

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
UNUSED_AFTER_DAYS = 60
CHAT_HISTORY_TURNS = 5
CHAT_TRANSACTION_LIMIT = 10

_FENCE_RE = re.compile(r"```(?:json)?\s*|```", re.IGNORECASE)

CHAT_FALLBACK = "I apologize, but I'm having trouble processing your request right now. Please try again later."


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fences the model sometimes wraps JSON in."""
    return _FENCE_RE.sub("", text or "").strip()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _subscription_payload(subscription) -> Dict[str, Any]:
    return {
        "id": str(subscription.id),
        "name": subscription.name,
        "amount": float(subscription.amount),
        "currency": getattr(subscription, "currency", None) or "USD",
        "interval": getattr(subscription, "interval", None) or "monthly",
        "merchant": subscription.merchant,
        "renewal_date": _iso(subscription.renewal_date),
        "status": subscription.status,
    }


def _transaction_payload(transaction) -> Dict[str, Any]:
    return {
        "id": str(transaction.id),
        "amount": float(transaction.amount),
        "date": _iso(transaction.date),
        "merchant": transaction.merchant,
        "description": getattr(transaction, "description", None),
        "subscription_id": str(transaction.subscription_id) if getattr(transaction, "subscription_id", None) else None,
    }


def fallback_analysis(
    subscriptions: Sequence,
    transactions: Sequence,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Local analysis: totals plus subscriptions with no transaction in 60 days."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=UNUSED_AFTER_DAYS)
    total_monthly = sum(to_monthly_amount(s.amount, getattr(s, "interval", "monthly")) for s in subscriptions)

    unused = []
    for sub in subscriptions:
        merchant = (sub.merchant or "").lower()
        related = [
            t.date for t in transactions
            if (getattr(t, "subscription_id", None) and str(t.subscription_id) == str(sub.id))
            or (merchant and t.merchant and merchant in t.merchant.lower())
        ]
        last_seen = max(related) if related else None
        if last_seen is None or last_seen < cutoff:
            unused.append(
                {
                    "subscription_id": str(sub.id),
                    "name": sub.name,
                    "amount": float(sub.amount),
                    "days_since_last_transaction": (now - last_seen).days if last_seen else UNUSED_AFTER_DAYS,
                    "reasoning": f"No transactions found in the last {UNUSED_AFTER_DAYS} days",
                }
            )

    return {
        "spending_pattern": {
            "total_monthly": round(total_monthly, 2),
            "total_yearly": round(total_monthly * 12, 2),
            "category_breakdown": {},
            "trend": "stable",
            "insights": [f"You're spending {total_monthly:.2f}/month on subscriptions"],
        },
        "unused_subscriptions": unused,
        "downgrade_opportunities": [],
        "duplicate_services": [],
        "annual_vs_monthly_savings": [],
    }


def fallback_cancellation_steps(name: str) -> List[str]:
    return [
        f"Log into your {name} account",
        "Navigate to Account or Subscription settings",
        "Find the cancellation option",
        "Follow the prompts to confirm cancellation",
        "Save your cancellation confirmation",
    ]


def fallback_support_template(name: str, reason: str) -> str:
    return f"""Dear {name} Support Team,

I am writing to request assistance with my subscription (Account: [YOUR_ACCOUNT_EMAIL]).

{reason}

Please let me know the next steps.

Thank you,
[YOUR_NAME]"""


class SubscriptionAssistant:
    """
    OpenAI-backed subscription assistant.

    Pass `client` to use a preconfigured (or fake) client; otherwise one is
    created on first use from OPENAI_API_KEY.
    """

    TEMPERATURE = 0.3
    MAX_TOKENS = 1500
    TIMEOUT_SECONDS = 30

    def __init__(self, client: Optional[Any] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or os.getenv("AI_MODEL", DEFAULT_MODEL)

    def _get_client(self) -> Optional[Any]:
        if self._client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                logger.warning("[AI_ASSISTANT] OPENAI_API_KEY not set, using local fallbacks")
                return None
            self._client = OpenAI(api_key=api_key)
            logger.info("[AI_ASSISTANT] OpenAI client initialized")
        return self._client

    def _complete(self, system: str, prompt: str) -> Optional[str]:
        """Run one chat completion; None when the client is unavailable or the call fails."""
        client = self._get_client()
        if client is None:
            return None
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.TEMPERATURE,
                max_tokens=self.MAX_TOKENS,
                timeout=self.TIMEOUT_SECONDS,
            )
            return (response.choices[0].message.content or "").strip()
        except Exception as e:
            logger.error(f"[AI_ASSISTANT] Completion failed (model {self.model}): {e}")
            return None

    def _complete_json(self, system: str, prompt: str) -> Optional[Any]:
        text = self._complete(system, prompt)
        if text is None:
            return None
        try:
            return json.loads(strip_code_fences(text))
        except ValueError as e:
            logger.error(f"[AI_ASSISTANT] Model returned invalid JSON: {e}")
            return None

    def analyze_spending_patterns(self, subscriptions: Sequence, transactions: Sequence) -> Dict[str, Any]:
        prompt = f"""Analyze the following subscription data and respond with JSON.

Subscriptions:
{json.dumps([_subscription_payload(s) for s in subscriptions], indent=2)}

Transactions (last 12 months):
{json.dumps([_transaction_payload(t) for t in transactions], indent=2)}

Respond in exactly this JSON format:
{{
  "spending_pattern": {{
    "total_monthly": number,
    "total_yearly": number,
    "category_breakdown": {{"category": amount}},
    "trend": "increasing" | "decreasing" | "stable",
    "insights": ["insight"]
  }},
  "unused_subscriptions": [{{"subscription_id": "id", "name": "name", "amount": number, "days_since_last_transaction": number, "reasoning": "why"}}],
  "downgrade_opportunities": [{{"subscription_id": "id", "name": "name", "current_amount": number, "suggested_amount": number, "savings": number, "reasoning": "why"}}],
  "duplicate_services": [{{"service_name": "name", "subscriptions": [{{"id": "id", "name": "name", "amount": number}}], "total_waste": number, "recommendation": "what to do"}}],
  "annual_vs_monthly_savings": [{{"subscription_id": "id", "name": "name", "monthly_amount": number, "annual_amount": number, "savings": number, "savings_percentage": number}}]
}}

Mark a subscription unused if it has no transactions in 60+ days. Return ONLY valid JSON."""

        analysis = self._complete_json(
            "You are a financial assistant analyzing subscription spending. Respond with JSON only.",
            prompt,
        )
        if not isinstance(analysis, dict) or "spending_pattern" not in analysis:
            return fallback_analysis(subscriptions, transactions)
        return analysis

    def generate_smart_recommendations(
        self,
        subscriptions: Sequence,
        analysis: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        pattern = analysis.get("spending_pattern", {})
        summary = {
            "total_monthly": pattern.get("total_monthly", 0),
            "unused_count": len(analysis.get("unused_subscriptions", [])),
            "duplicate_count": len(analysis.get("duplicate_services", [])),
            "potential_savings": sum(
                float(s.get("savings", 0) or 0) for s in analysis.get("annual_vs_monthly_savings", [])
            ),
        }
        prompt = f"""Generate personalized, actionable subscription recommendations.

Analysis summary:
{json.dumps(summary, indent=2)}

Subscriptions:
{json.dumps([_subscription_payload(s) for s in subscriptions], indent=2)}

Respond with a JSON array of objects with keys: id, type (cost-cutting | plan-alternative | bundle | trial-warning | price-alert),
title, description, subscription_id, impact {{type, value, period}}, confidence (0-100), priority (high | medium | low),
action_text, reasoning (array of strings). Return ONLY the JSON array."""

        recommendations = self._complete_json(
            "You are a financial assistant giving subscription recommendations. Respond with JSON only.",
            prompt,
        )
        return recommendations if isinstance(recommendations, list) else []

    def generate_cancellation_guide(self, subscription) -> List[str]:
        name = subscription.name
        prompt = f"""Generate a step-by-step cancellation guide for {name} ({subscription.merchant or 'service'}).

Provide 5-7 specific steps: where to find the cancellation settings, what to click, and any
notes on refunds or timing. Return ONLY a JSON array of strings, one per step."""

        steps = self._complete_json("You write clear, accurate cancellation instructions.", prompt)
        if isinstance(steps, list) and steps and all(isinstance(s, str) for s in steps):
            return steps
        return fallback_cancellation_steps(name)

    def generate_support_template(self, subscription, reason: str) -> str:
        name = subscription.name
        prompt = f"""Write a professional, polite support email to {name} regarding: {reason}

State the request clearly, include placeholders for account details, and keep it ready to send.
Return ONLY the email body, no subject line and no Markdown."""

        text = self._complete("You write concise customer support emails.", prompt)
        if not text:
            return fallback_support_template(name, reason)
        return strip_code_fences(text)

    def chat(
        self,
        message: str,
        history: Sequence[Dict[str, str]],
        subscriptions: Sequence,
        transactions: Sequence,
    ) -> str:
        recent_history = [
            {"role": turn.get("role", "user"), "content": turn.get("content", "")}
            for turn in list(history)[-CHAT_HISTORY_TURNS:]
        ]
        recent_transactions = [
            {"amount": float(t.amount), "date": _iso(t.date), "merchant": t.merchant}
            for t in list(transactions)[:CHAT_TRANSACTION_LIMIT]
        ]
        prompt = f"""User's subscriptions:
{json.dumps([_subscription_payload(s) for s in subscriptions], indent=2)}

Recent transactions (last 3 months):
{json.dumps(recent_transactions, indent=2)}

Conversation history:
{json.dumps(recent_history, indent=2)}

User's current message: {message}"""

        system = (
            "You are a helpful assistant for Subscription Sentry, a subscription management app. "
            "Answer questions about the user's subscriptions, give cancellation guidance, suggest "
            "optimizations and calculate savings. Be specific and friendly, and use real numbers from their data."
        )
        reply = self._complete(system, prompt)
        return reply or CHAT_FALLBACK
