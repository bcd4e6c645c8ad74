"""
Built-in email templates.

Each entry carries the default copy; admins can override the editable fields
per key (see EmailTemplate). Placeholders use {{name}} and must be declared in
`variables`.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace

LAYOUT_STANDARD = "standard"
LAYOUT_HERO = "hero"


@dataclass(frozen=True)
class TemplateDefinition:
    key: str
    name: str
    description: str
    subject: str
    heading: str
    body_paragraphs: tuple[str, ...]
    variables: dict[str, str] = field(default_factory=dict)  # name -> string/url/email/number/date
    layout: str = LAYOUT_STANDARD
    is_marketing: bool = False
    preheader: str | None = None
    bullet_items: tuple[str, ...] = ()
    cta_label: str | None = None
    cta_url: str | None = None
    footer_text: str | None = None
    hero_image_url: str | None = None

    def with_override(self, override) -> "TemplateDefinition":
        """Apply a DB EmailTemplate row; blank columns keep the default."""
        changes = {}
        for attr in ("subject", "heading", "cta_label", "cta_url", "footer_text"):
            value = getattr(override, attr, None)
            if value:
                changes[attr] = value
        if override.body_paragraphs:
            changes["body_paragraphs"] = tuple(str(p) for p in override.body_paragraphs)
        return replace(self, **changes)


_DASHBOARD_URL = "{{base_url}}/dashboard"

EMAIL_TEMPLATES: tuple[TemplateDefinition, ...] = (
    TemplateDefinition(
        key="email-verification",
        name="Email Verification",
        description="Sent when a new user signs up to verify their email address",
        subject="Verify your email address",
        preheader="Complete your account setup by verifying your email",
        heading="Verify your email address",
        body_paragraphs=(
            "Hi {{display_name}},",
            "We received a request to create an account for {{user_email}}. Verify your email to activate your account.",
            "If the button doesn't work, copy and paste this link:\n{{verification_url}}",
            "This link expires in 24 hours. If you didn't create an account, you can ignore this email.",
        ),
        cta_label="Verify email address",
        cta_url="{{verification_url}}",
        variables={"display_name": "string", "user_email": "email", "verification_url": "url"},
    ),
    TemplateDefinition(
        key="password-reset",
        name="Password Reset",
        description="Sent when a user asks to reset their password",
        subject="Reset your password",
        heading="Reset your password",
        body_paragraphs=(
            "We received a request to reset the password for {{user_email}}.",
            "This link expires in 1 hour. If you didn't ask for a reset, you can ignore this email.",
        ),
        cta_label="Reset password",
        cta_url="{{reset_url}}",
        variables={"user_email": "email", "reset_url": "url"},
    ),
    TemplateDefinition(
        key="payment-success",
        name="Payment Success",
        description="Sent when a membership payment is successfully processed",
        subject="Payment received",
        heading="Payment received",
        body_paragraphs=(
            "We've successfully processed your payment. Your Premium membership is now active.",
            "Amount: {{amount}} {{currency}}",
            "Payment ID: {{payment_id}}",
            "Plan: {{plan_name}}",
            "Next billing date: {{next_billing_date}}",
        ),
        cta_label="View dashboard",
        cta_url=_DASHBOARD_URL,
        variables={
            "customer_name": "string",
            "amount": "string",
            "currency": "string",
            "payment_id": "string",
            "plan_name": "string",
            "next_billing_date": "string",
        },
    ),
    TemplateDefinition(
        key="refund-processed",
        name="Refund Processed",
        description="Sent when a refund has been processed",
        subject="Refund processed",
        heading="Refund processed",
        body_paragraphs=(
            "Hi {{display_name}},",
            "We've processed a {{refund_type}} refund of {{refund_amount}} {{currency}} for your payment of {{payment_amount}} {{currency}}.",
            "Refund Details:\nAmount: {{refund_amount}} {{currency}}\nDate: {{refund_date}}\nType: {{refund_type}}",
            "{{comment}}",
            "The refund will appear in your account within 5-10 business days, depending on your bank or card issuer.",
        ),
        cta_label="View Dashboard",
        cta_url=_DASHBOARD_URL,
        variables={
            "display_name": "string",
            "refund_amount": "string",
            "currency": "string",
            "payment_amount": "string",
            "refund_type": "string",
            "comment": "string",
            "refund_date": "string",
        },
    ),
    TemplateDefinition(
        key="verification-request",
        name="Verification Request (Admin)",
        description="Sent to admins when a studio owner requests verified status",
        subject="Verification Request - {{studio_name}} (@{{username}})",
        heading="Verification Request Received",
        body_paragraphs=(
            "A studio owner has requested verified status for their profile.",
            "Studio Name: {{studio_name}}",
            "Owner: {{studio_owner_name}}",
            "Username: @{{username}}",
            "Email: {{email}}",
            "Profile Completion: {{profile_completion}}%",
        ),
        bullet_items=(
            "Profile is at least 85% complete",
            "Studio information is accurate and professional",
            "Contact details are valid",
            "Images meet quality standards",
            "No policy violations",
        ),
        cta_label="View studio profile",
        cta_url="{{studio_url}}",
        variables={
            "studio_owner_name": "string",
            "studio_name": "string",
            "username": "string",
            "email": "email",
            "profile_completion": "number",
            "studio_url": "url",
        },
    ),
    TemplateDefinition(
        key="reservation-reminder-day2",
        name="Username Reservation - Day 2 Reminder",
        description="Sent 2 days after signup to remind users to complete payment",
        subject="Complete Your Signup - @{{username}} is Reserved for You",
        heading="Complete your signup",
        body_paragraphs=(
            "You started signing up but didn't complete your payment. Your username @{{username}} is reserved until {{reservation_expires_at}}.",
            "Reserved username: @{{username}}",
            "{{days_remaining}} days remaining",
        ),
        cta_label="Complete signup",
        cta_url="{{signup_url}}",
        variables={
            "display_name": "string",
            "username": "string",
            "reservation_expires_at": "string",
            "days_remaining": "number",
            "signup_url": "url",
        },
    ),
    TemplateDefinition(
        key="reservation-urgency-day5",
        name="Username Reservation - Day 5 Urgency",
        description="Sent 5 days after signup with urgency messaging",
        subject="Only {{days_remaining}} Days Left to Claim @{{username}}",
        heading="Your username reservation expires in {{days_remaining}} days",
        body_paragraphs=(
            "Complete your signup before {{reservation_expires_at}} to keep @{{username}}. After this date, the username will become available to others.",
            "Reserved username: @{{username}}",
            "Expires {{reservation_expires_at}}",
        ),
        cta_label="Complete signup",
        cta_url="{{signup_url}}",
        variables={
            "display_name": "string",
            "username": "string",
            "reservation_expires_at": "string",
            "days_remaining": "number",
            "signup_url": "url",
        },
    ),
    TemplateDefinition(
        key="reservation-expired",
        name="Username Reservation Expired",
        description="Sent when a username reservation expires",
        subject="Your @{{username}} Reservation Has Expired",
        heading="Your username reservation has expired",
        body_paragraphs=(
            "The reservation for @{{username}} has expired and is now available to others. Your signup data has been removed.",
            "If you'd like to join Voiceover Studio Finder, you can sign up again. The username @{{username}} may or may not still be available.",
        ),
        cta_label="Sign up again",
        cta_url="{{signup_url}}",
        variables={"display_name": "string", "username": "string", "signup_url": "url"},
    ),
    TemplateDefinition(
        key="payment-failed-reservation",
        name="Payment Failed - Username Reservation",
        description="Sent when payment fails during signup (username still reserved)",
        subject="Payment Issue - Complete Your Signup to Claim @{{username}}",
        heading="Payment issue with your signup",
        body_paragraphs=(
            "We couldn't process your payment. Your username @{{username}} is reserved until {{reservation_expires_at}}.",
            "Error: {{error_message}}",
            "Reserved username: @{{username}}",
            "Reserved until {{reservation_expires_at}}",
        ),
        cta_label="Retry payment",
        cta_url="{{retry_url}}",
        variables={
            "display_name": "string",
            "username": "string",
            "amount": "string",
            "currency": "string",
            "error_message": "string",
            "reservation_expires_at": "string",
            "retry_url": "url",
        },
    ),
    TemplateDefinition(
        key="support-request",
        name="Support Request (to Support Team)",
        description="Sent to support inbox when a user submits a support issue",
        subject="Support request: {{category}} - @{{username}}",
        heading="New support request",
        body_paragraphs=(
            "A user has submitted a support request.",
            "From: {{display_name}} (@{{username}})",
            "Email: {{user_email}}",
            "Category: {{category}}",
            "Submitted: {{submitted_at}}",
            "{{message}}",
        ),
        footer_text="Reply directly to this email to respond to the user.",
        variables={
            "display_name": "string",
            "username": "string",
            "user_email": "email",
            "category": "string",
            "submitted_at": "string",
            "message": "string",
        },
    ),
    TemplateDefinition(
        key="studio-enquiry",
        name="Studio Booking Enquiry",
        description="Sent to a studio owner when a visitor uses the contact form on their profile",
        subject="New enquiry via Voiceover Studio Finder",
        heading="New enquiry received for {{studio_name}}",
        body_paragraphs=(
            "From: {{sender_name}} <{{sender_email}}>",
            "{{message}}",
            "To reply, simply respond to this email or contact {{sender_name}} directly at {{sender_email}}.",
        ),
        variables={
            "studio_name": "string",
            "sender_name": "string",
            "sender_email": "email",
            "message": "string",
        },
    ),
    TemplateDefinition(
        key="renewal-reminder",
        name="Membership Renewal Reminder",
        description="Sent 30, 14, 7 and 1 days before a membership expires",
        subject="Your membership expires in {{days_remaining}} days",
        heading="Your membership expires on {{expiry_date}}",
        body_paragraphs=(
            "Hi {{display_name}},",
            "Your Premium membership for @{{username}} expires in {{days_remaining}} days.",
            "Renew now to keep your studio listed in the directory. Renewing early adds the time you have left on top of the new year.",
        ),
        cta_label="Renew membership",
        cta_url="{{renew_url}}",
        variables={
            "display_name": "string",
            "username": "string",
            "days_remaining": "number",
            "expiry_date": "string",
            "renew_url": "url",
        },
    ),
    TemplateDefinition(
        key="legacy-user-announcement",
        name="Legacy User Announcement",
        description="Re-engagement email for legacy users",
        layout=LAYOUT_HERO,
        is_marketing=True,
        hero_image_url="{{base_url}}/static/img/email-header.png",
        subject="Voiceover Studio Finder is back, and your Premium membership is waiting",
        preheader="Six months of free Premium membership starts the moment you sign in.",
        heading="Voiceover Studio Finder is back!",
        body_paragraphs=(
            "Hi {{display_name}},",
            "Voiceover Studio Finder is back, and we're genuinely excited to share it with you!",
            "We've rebuilt everything. The platform is faster and the search is smarter.",
            "We now offer two membership tiers: Basic (free) and Premium. You've been part of our community from the beginning, so six months of Premium membership starts the moment you sign in.",
            "Thank you for being a member.",
        ),
        cta_label="Set password and sign in",
        cta_url="{{reset_password_url}}",
        footer_text="Your account: {{user_email}}.\nIf the button above doesn't work, copy and paste this link into your browser:\n{{reset_password_url}}",
        variables={"display_name": "string", "user_email": "email", "reset_password_url": "url"},
    ),
    TemplateDefinition(
        key="member-newsletter",
        name="Member Newsletter",
        description="General announcement to members",
        is_marketing=True,
        subject="News from Voiceover Studio Finder",
        heading="News from Voiceover Studio Finder",
        body_paragraphs=("Hi {{display_name}},", "{{message}}"),
        cta_label="Visit the directory",
        cta_url="{{base_url}}",
        variables={"display_name": "string", "message": "string"},
    ),
)

_BY_KEY = {t.key: t for t in EMAIL_TEMPLATES}


def get_template_definition(key: str) -> TemplateDefinition | None:
    return _BY_KEY.get(key)
