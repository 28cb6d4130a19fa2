from __future__ import annotations

from jinja2 import Environment, StrictUndefined


RECEIPT_TEMPLATE = """<html><head><meta charset="utf-8"><title>Payment receipt</title></head><body>
<h1>Payment receipt</h1>
<table>
<tr><th>Receipt</th><td>{{ receipt_number }}</td></tr>
<tr><th>Student</th><td>{{ student_name }}</td></tr>
<tr><th>Course</th><td>{{ course_id }}</td></tr>
<tr><th>Payment date</th><td>{{ payment_date }}</td></tr>
<tr><th>Method</th><td>{{ payment_method }}</td></tr>
<tr><th>Transaction</th><td>{{ transaction_id or '-' }}</td></tr>
<tr><th>Amount</th><td>{{ currency }} {{ '%.2f' | format(amount) }}</td></tr>
<tr><th>Course price</th><td>{{ price_currency }} {{ '%.2f' | format(final_price) }}</td></tr>
{% if installment_number %}<tr><th>Installment</th><td>{{ installment_number }}</td></tr>{% endif %}
</table>
</body></html>"""

ENROLLMENT_EMAIL_TEMPLATE = """<p>Hi {{ student_name }},</p>
<p>You are enrolled in course <b>{{ course_id }}</b> ({{ enrollment_type }}).</p>
{% if final_price is not none %}<p>Price: {{ currency }} {{ '%.2f' | format(final_price) }}</p>{% endif %}
{% if installments %}<p>Installments: {{ installments }}{% if next_payment_date %}, next due on {{ next_payment_date }}{% endif %}.</p>{% endif %}"""

PAYMENT_EMAIL_TEMPLATE = """<p>Hi {{ student_name }},</p>
<p>We received {{ currency }} {{ '%.2f' | format(amount) }} for course {{ course_id }}.</p>
{% if installment_number %}<p>Installment {{ installment_number }} is now paid.</p>{% endif %}"""

COMPLETION_EMAIL_TEMPLATE = """<p>Congratulations {{ student_name }}!</p>
<p>You completed course {{ course_id }} on {{ completed_on }}.</p>"""


class TemplateEngine:
    def __init__(self) -> None:
        self.env = Environment(undefined=StrictUndefined, autoescape=True)

    def render(self, body: str, context: dict[str, object]) -> str:
        return self.env.from_string(body).render(**context)


template_engine = TemplateEngine()
