"""
Notification Templates

Builds the Telegram (HTML parse mode) texts for count changes and for the
live monitoring statistics display.
"""

from html import escape
from urllib.parse import urlencode

import pytz

from utils.number_parser import format_count


def build_search_url(subscription, results_url="https://peek.tg/gifts"):
    """
    Build the public results link for a subscription's filters.
    """
    params = {'gift': subscription['item_name']}
    for key in ('model', 'background', 'pattern'):
        if subscription.get(key):
            params[key] = subscription[key]
    return f"{results_url}?{urlencode(params)}"


def format_change_notification(subscription, old_count, new_count, item_link=None,
                               results_url="https://peek.tg/gifts"):
    """
    Format the message sent to a subscriber when the count changes.

    Args:
        subscription (dict): Subscription row
        old_count (int): Previous accepted count
        new_count (int): Newly confirmed count
        item_link (str, optional): Deep link to the newest matching item
        results_url (str): Base URL of the public results page

    Returns:
        str: HTML-formatted message
    """
    increased = new_count > old_count
    arrow = "📈" if increased else "📉"
    direction = "increased" if increased else "decreased"

    lines = [
        "🎁 <b>Gift count changed</b>",
        "",
        f"🎯 <b>Gift:</b> {escape(subscription['item_name'])}",
    ]
    if subscription.get('model'):
        lines.append(f"🤖 <b>Model:</b> {escape(subscription['model'])}")
    if subscription.get('background'):
        lines.append(f"🎨 <b>Background:</b> {escape(subscription['background'])}")
    if subscription.get('pattern'):
        lines.append(f"🔍 <b>Pattern:</b> {escape(subscription['pattern'])}")

    lines += [
        "",
        f"{arrow} Count {direction}: <b>{format_count(old_count)}</b> → <b>{format_count(new_count)}</b>",
        f"📊 Difference: <b>{format_count(abs(new_count - old_count))}</b>",
        "",
    ]

    if item_link:
        lines.append(f'🎁 <a href="{escape(item_link, quote=True)}">Latest listed gift</a>')

    search_url = build_search_url(subscription, results_url)
    lines.append(f'🔗 <a href="{escape(search_url, quote=True)}">All matching gifts</a>')

    return "\n".join(lines)


def format_monitoring_stats(stats, timezone="UTC"):
    """
    Format the monitoring statistics shown in live status messages.
    """
    status = "🟢 Running" if stats.is_running else "🔴 Stopped"

    if stats.last_check:
        tz = pytz.timezone(timezone)
        last_check = stats.last_check
        if last_check.tzinfo is None:
            last_check = last_check.astimezone()
        last_check = last_check.astimezone(tz).strftime('%Y-%m-%d %H:%M:%S %Z')
    else:
        last_check = "Never"

    success_rate = round(stats.successful_checks / stats.total_checks * 100) if stats.total_checks else 0

    return (
        "📊 <b>Monitoring statistics</b>\n\n"
        f"🔄 <b>Status:</b> {status}\n"
        f"📈 <b>Total checks:</b> {stats.total_checks}\n"
        f"✅ <b>Successful:</b> {stats.successful_checks}\n"
        f"❌ <b>Failed:</b> {stats.failed_checks}\n"
        f"🎯 <b>Changes detected:</b> {stats.total_changes}\n"
        f"📨 <b>Notifications:</b> {stats.notifications_sent} sent, {stats.notifications_failed} failed\n"
        f"⏰ <b>Last check:</b> {last_check}\n\n"
        f"📊 <b>Success rate:</b> {success_rate}%"
    )
