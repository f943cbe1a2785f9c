"""
消息文案：买家、管理员与结账频道
"""
import re

_MARKDOWN_CHARS = re.compile(r"[*_`\[\]]")


def format_amount(amount: int) -> str:
    return f"{amount:,}"


def strip_markdown(text: str) -> str:
    """去掉 Markdown 标记，用于富文本发送失败后的纯文本重试"""
    return _MARKDOWN_CHARS.sub("", text)


def payment_message(order_id: int, grand_total: int, currency: str) -> str:
    return (
        f"💳 *订单 #{order_id} 付款*\n\n"
        f"应付金额：*{format_amount(grand_total)} {currency}*\n\n"
        "请将上述金额转入指定账户，然后在商店机器人中发送付款凭证截图。\n\n"
        "⏳ 提交凭证或付款时限结束后，本消息将被删除。"
    )


def receipt_instruction(order_id: int) -> str:
    return f"🧾 完成付款后，请直接在此发送订单 #{order_id} 的付款凭证截图。"


def order_approved_with_invite(order_id: int, invite_link: str) -> str:
    return f"订单 #{order_id} 已通过审批。请进入付款频道完成付款：{invite_link}"


def order_rejected(order_id: int, reason: str = None) -> str:
    text = f"❌ 很抱歉，订单 #{order_id} 未通过审批。"
    if reason:
        text += f"\n原因：{reason}"
    return text


def invite_expired(order_id: int) -> str:
    return f"⌛ 订单 #{order_id} 的付款时限已结束，订单已取消。如需购买请重新下单。"


def receipt_received(order_id: int) -> str:
    return f"✅ 已收到订单 #{order_id} 的付款凭证，请等待审核。"


def receipt_approved(order_id: int) -> str:
    return f"💰 订单 #{order_id} 付款已确认，我们会尽快为您发货。"


def receipt_rejected(order_id: int, reason: str = None) -> str:
    text = f"⚠️ 订单 #{order_id} 的付款凭证未通过审核，请重新发送。"
    if reason:
        text += f"\n原因：{reason}"
    return text


def manager_new_order(order_id: int, customer: str, grand_total: int, currency: str) -> str:
    return (
        f"🆕 新订单 #{order_id}\n"
        f"买家：{customer}\n"
        f"金额：{format_amount(grand_total)} {currency}\n"
        "请审批或拒绝。"
    )


def manager_new_receipt(order_id: int, receipt_id: int, customer: str) -> str:
    return f"🧾 订单 #{order_id} 收到新的付款凭证 (#{receipt_id})\n买家：{customer}\n请审核。"
