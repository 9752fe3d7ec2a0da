# bookin/email_templates.py
from html import escape


def compose_login_code_email(*, code: str, minutes: int = 10) -> tuple[str, str]:
    """登入驗證碼（粵語 + English）"""
    subject = f"你的 BookIn 登入碼 / Your BookIn sign-in code: {code}"
    code = escape(code)

    html = f"""<!doctype html><html><body style="font-family:system-ui,Segoe UI,Arial,sans-serif;">
  <div style="max-width:560px;margin:0 auto;padding:24px;">
    <h2 style="margin:0 0 12px 0;">BookIn</h2>
    <p>你嘅登入驗證碼係：</p>
    <p style="font-size:28px;letter-spacing:6px;margin:12px 0;"><strong>{code}</strong></p>
    <p>驗證碼 {minutes} 分鐘內有效。</p>
    <hr style="border:none;border-top:1px solid #eee;margin:24px 0;">
    <p>Your sign-in code is <strong>{code}</strong>. It expires in {minutes} minutes.</p>
    <p style="color:#666;font-size:12px;margin:16px 0 0 0;">
      如果唔係你本人申請，可以忽略呢封電郵。 / If you did not request this, ignore this email.
    </p>
  </div>
</body></html>"""
    return subject, html
