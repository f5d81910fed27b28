"""Reply texts sent to WhatsApp users.

Templates contain static text with placeholders for whitelisted params only.
"""

from typing import Any

TEMPLATES: dict[str, dict[str, Any]] = {
    "onboarding_prompt": {
        "text": (
            "👋 Welcome to ChatCanvas! I turn your ideas into images.\n\n"
            "Before we start, please reply with your email address."
        ),
        "allowed_params": [],
    },
    "onboarding_invalid_email": {
        "text": (
            "Hmm, that doesn't look like a valid email address. "
            "Please send it in the form name@example.com."
        ),
        "allowed_params": [],
    },
    "onboarding_complete": {
        "text": (
            "✅ Thanks, you're all set!\n\n"
            "Describe any image you want, e.g. \"show me a sunset over the ocean\".\n"
            "Send \"balance\" to check your credits or \"buy credits\" to top up."
        ),
        "allowed_params": [],
    },
    "greeting": {
        "text": (
            "Hi there! 👋 Tell me what you'd like to see and I'll create it.\n"
            "Try \"create a cat astronaut floating in space\"."
        ),
        "allowed_params": [],
    },
    "credit_balance": {
        "text": "💳 You have {balance} credit(s). Each image costs 1 credit.",
        "allowed_params": ["balance"],
    },
    "credit_balance_empty": {
        "text": (
            "💳 You have 0 credits.\n\n"
            "Packages start at {price} for {credits} credits. "
            "Send \"buy credits\" to see all options."
        ),
        "allowed_params": ["price", "credits"],
    },
    "credit_balance_empty_no_offer": {
        "text": "💳 You have 0 credits. Send \"buy credits\" to see how to top up.",
        "allowed_params": [],
    },
    "buy_credits": {
        "text": (
            "🛒 Credit packages are available at {storefront_url}\n\n"
            "Pay with your WhatsApp number and the credits land in your account "
            "right after checkout. Send \"balance\" any time to check."
        ),
        "allowed_params": ["storefront_url"],
    },
    "insufficient_credits": {
        "text": (
            "You're out of credits. Send \"balance\" to check your account or "
            "\"buy credits\" to get more."
        ),
        "allowed_params": [],
    },
    "generation_started": {
        "text": "🎨 Working on your image, this can take up to a minute...",
        "allowed_params": [],
    },
    "generation_caption": {
        "text": (
            "Here's your image! Reply with changes like \"make it more vibrant\" "
            "to refine it, or describe something new."
        ),
        "allowed_params": [],
    },
    "generation_failed": {
        "text": (
            "😔 Sorry, I couldn't create that image. Your credit has been refunded. "
            "Please try again in a moment."
        ),
        "allowed_params": [],
    },
    "chat_failed": {
        "text": "Sorry, I couldn't come up with an answer right now. Please try again.",
        "allowed_params": [],
    },
    "image_nudge": {
        "text": "💡 By the way, I can also make images. Just describe what you want to see!",
        "allowed_params": [],
    },
    "unsupported_message": {
        "text": "I can only read text messages for now. Describe the image you want in words!",
        "allowed_params": [],
    },
    "credits_purchased": {
        "text": (
            "🎉 Payment successful! {credits} credits have been added to your account.\n\n"
            "Send \"balance\" to check your new credit balance."
        ),
        "allowed_params": ["credits"],
    },
    "subscription_credits_added": {
        "text": (
            "🎉 Your subscription credits ({credits}) have been added to your account.\n\n"
            "Send \"balance\" to check your new credit balance."
        ),
        "allowed_params": ["credits"],
    },
}


def render(template_key: str, params: dict[str, Any] | None = None) -> str:
    """Render template with params. Validates allowed_params.

    Args:
        template_key: Template identifier.
        params: Parameters to interpolate (must be in allowed_params).

    Returns:
        Rendered text string.

    Raises:
        ValueError: If template_key unknown or params contains disallowed keys.
    """
    if template_key not in TEMPLATES:
        raise ValueError(f"Unknown template: {template_key}")

    params = params or {}
    template = TEMPLATES[template_key]
    extras = set(params) - set(template["allowed_params"])
    if extras:
        raise ValueError(f"Disallowed params for {template_key}: {extras}")

    return template["text"].format(**params)
