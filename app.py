"""
Driver Logbook – daily work reports for contract delivery drivers
=================================================================
Main Flask application – routes, configuration, and database init.

Features:
  1. User registration, login, password change & self-service reset
  2. Daily reports (hours, odometer, deliveries, highway tolls, notes)
  3. Report history with date / status / text filters and pagination
  4. Dashboard with this month's statistics and recent reports
  5. Calendar view of worked days
  6. Monthly statistics with CSV (basic / detailed / accounting),
     PDF and Excel export

How to run
----------
1.  pip install -e .
2.  python app.py          # starts the dev server on http://127.0.0.1:5000
"""

import calendar
import io
import math
import os
from datetime import date, datetime, timedelta, timezone
from urllib.parse import urlsplit

from dotenv import load_dotenv
from flask import (
    Flask,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    send_file,
    session,
    url_for,
)
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import (
    LoginManager,
    current_user,
    login_required,
    login_user,
    logout_user,
)
from flask_mail import Mail, Message
from flask_wtf.csrf import CSRFProtect

from calculations import (
    Period,
    ValidationError,
    calculate_duration_minutes,
    calculate_monthly_stats,
    format_distance,
    format_duration,
    parse_time,
    report_distance,
    report_duration_minutes,
)
from exporters import (
    CSV_SCHEMAS,
    EXPORT_FORMATS,
    FORMAT_DISPLAY_NAMES,
    ExportError,
    export_filename,
    generate_csv,
    generate_pdf,
    generate_xlsx,
)
from models import (
    DailyReport,
    User,
    db,
    get_report_by_date,
    latest_end_odometer,
    reports_for_user,
)

# ── App & config ─────────────────────────────────────────────────────────────

load_dotenv()  # load .env file if present

app = Flask(__name__)

basedir = os.path.abspath(os.path.dirname(__file__))
database_url = os.environ.get(
    "DATABASE_URL", "sqlite:///" + os.path.join(basedir, "logbook.db")
)
# Heroku / PythonAnywhere may provide postgres:// but SQLAlchemy 2.x needs postgresql://
if database_url.startswith("postgres://"):
    database_url = database_url.replace("postgres://", "postgresql://", 1)
app.config["SQLALCHEMY_DATABASE_URI"] = database_url
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "logbook-dev-secret-key")

# ── Session timeout (inactivity) ─────────────────────────────────────────────
app.config["SESSION_TIMEOUT_MINUTES"] = int(os.environ.get("SESSION_TIMEOUT_MINUTES", 30))
app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(
    minutes=app.config["SESSION_TIMEOUT_MINUTES"]
)

# ── Report rules ─────────────────────────────────────────────────────────────
# Highest reading the odometer can show before wrapping to 0. Unset means a
# lower end reading is rejected instead of being treated as a wrap.
_rollover = os.environ.get("ODOMETER_ROLLOVER_MAX", "").strip()
app.config["ODOMETER_ROLLOVER_MAX"] = float(_rollover) if _rollover else None
app.config["MAX_SHIFT_HOURS"] = float(os.environ.get("MAX_SHIFT_HOURS", 20))

# ── Mail config (disabled by default – set MAIL_ENABLED=1 env var to turn on)
app.config["MAIL_ENABLED"] = os.environ.get("MAIL_ENABLED", "0") == "1"
app.config["MAIL_SERVER"] = os.environ.get("MAIL_SERVER", "smtp.gmail.com")
app.config["MAIL_PORT"] = int(os.environ.get("MAIL_PORT", 587))
app.config["MAIL_USE_TLS"] = True
app.config["MAIL_USERNAME"] = os.environ.get("MAIL_USERNAME", "")
app.config["MAIL_PASSWORD"] = os.environ.get("MAIL_PASSWORD", "")
app.config["MAIL_DEFAULT_SENDER"] = os.environ.get(
    "MAIL_DEFAULT_SENDER", "noreply@driver-logbook.local"
)

app.logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

db.init_app(app)
mail = Mail(app)
csrf = CSRFProtect(app)
limiter = Limiter(app=app, key_func=get_remote_address, default_limits=[])

# ── Pagination ───────────────────────────────────────────────────────────────
PER_PAGE = 10
RECENT_REPORTS = 5
NOTES_MAX_LENGTH = 1000

# ── Flask-Login setup ────────────────────────────────────────────────────────

login_manager = LoginManager()
login_manager.init_app(app)
login_manager.login_view = "login"
login_manager.login_message = "ログインしてください。"
login_manager.login_message_category = "warning"


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@app.before_request
def check_session_timeout():
    """Log out the user after SESSION_TIMEOUT_MINUTES of inactivity."""
    if current_user.is_authenticated:
        now = datetime.now(timezone.utc)
        last_active = session.get("last_active")
        if last_active is not None:
            # Ensure last_active is timezone-aware (UTC) for safe subtraction
            if hasattr(last_active, "tzinfo") and last_active.tzinfo is None:
                last_active = last_active.replace(tzinfo=timezone.utc)
            elapsed = (now - last_active).total_seconds()
            if elapsed > app.config["SESSION_TIMEOUT_MINUTES"] * 60:
                logout_user()
                session.clear()
                flash("一定時間操作がなかったためログアウトしました。再度ログインしてください。", "warning")
                return redirect(url_for("login"))
        session["last_active"] = now
        session.permanent = True


# ── Template helpers ─────────────────────────────────────────────────────────


def rollover_max():
    return app.config["ODOMETER_ROLLOVER_MAX"]


@app.template_filter("distance")
def distance_filter(report):
    """Distance of a report for display ("" when not computable)."""
    return format_distance(report_distance(report, rollover_max()))


@app.template_filter("duration")
def duration_filter(report):
    try:
        return format_duration(report_duration_minutes(report))
    except ValidationError:
        return ""


@app.template_filter("weekday")
def weekday_filter(day):
    return "月火水木金土日"[day.weekday()]


# ── Email helper ─────────────────────────────────────────────────────────────


def send_notification(subject, recipients, body):
    """Send an email notification (only if MAIL_ENABLED is true)."""
    if not app.config["MAIL_ENABLED"]:
        return  # silently skip
    try:
        msg = Message(subject=subject, recipients=recipients, body=body)
        mail.send(msg)
    except Exception as e:
        app.logger.error(f"Failed to send email: {e}")


# ── Create DB tables ─────────────────────────────────────────────────────────

with app.app_context():
    db.create_all()


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  AUTHENTICATION                                                         ║
# ╚═══════════════════════════════════════════════════════════════════════════╝


PASSWORD_MIN_LENGTH = 6


def _valid_email(email):
    return "@" in email and "." in email.split("@")[-1]


def account_errors(display_name, email, user_id=None):
    """Checks shared by registration and the profile form."""
    errors = []
    if not display_name:
        errors.append("表示名は必須です。")
    elif len(display_name) > 120:
        errors.append("表示名は120文字以内で入力してください。")
    if not _valid_email(email):
        errors.append("有効なメールアドレスを入力してください。")
    elif User.query.filter(User.email == email, User.id != user_id).first():
        errors.append("このメールアドレスは既に登録されています。")
    return errors


def password_errors(password, confirm, label="パスワード"):
    errors = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"{label}は{PASSWORD_MIN_LENGTH}文字以上で入力してください。")
    if password != confirm:
        errors.append(f"{label}が一致しません。")
    return errors


def _flash_errors(errors):
    for e in errors:
        flash(e, "danger")


@app.route("/login", methods=["GET", "POST"])
@limiter.limit("10/minute")
def login():
    if current_user.is_authenticated:
        return redirect(url_for("dashboard"))

    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "")

        if not email or not password:
            flash("メールアドレスとパスワードを入力してください。", "danger")
            return render_template("auth/login.html")

        user = User.query.filter_by(email=email).first()
        if user and user.check_password(password):
            if not user.is_active_user:
                flash("このアカウントは無効化されています。", "danger")
                return render_template("auth/login.html")
            login_user(user)
            app.logger.info(f"User {user.id} logged in")
            flash(f"おかえりなさい、{user.display_name}さん！", "success")
            next_page = request.args.get("next")
            # Prevent open-redirect: reject absolute URLs
            if next_page:
                parsed = urlsplit(next_page)
                if parsed.netloc or parsed.scheme:
                    next_page = None
            return redirect(next_page or url_for("dashboard"))
        flash("メールアドレスまたはパスワードが正しくありません。", "danger")

    return render_template("auth/login.html")


@app.route("/logout")
@login_required
def logout():
    logout_user()
    flash("ログアウトしました。", "info")
    return redirect(url_for("login"))


@app.route("/register", methods=["GET", "POST"])
@limiter.limit("5/minute")
def register():
    if request.method == "POST":
        display_name = request.form.get("display_name", "").strip()
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "")

        errors = account_errors(display_name, email)
        errors += password_errors(password, request.form.get("password2", ""))
        if errors:
            _flash_errors(errors)
            return render_template("auth/register.html")

        user = User(email=email, display_name=display_name)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        app.logger.info(f"Registered user {user.id}")
        flash("アカウントを作成しました。ログインしてください。", "success")
        return redirect(url_for("login"))

    return render_template("auth/register.html")


@app.route("/change-password", methods=["GET", "POST"])
@login_required
def change_password():
    if request.method == "POST":
        current_pw = request.form.get("current_password", "")
        new_pw = request.form.get("new_password", "")

        errors = []
        if not current_user.check_password(current_pw):
            errors.append("現在のパスワードが正しくありません。")
        errors += password_errors(new_pw, request.form.get("confirm_password", ""), "新しいパスワード")
        if current_pw and current_pw == new_pw:
            errors.append("新しいパスワードは現在のものと異なる必要があります。")
        if errors:
            _flash_errors(errors)
            return render_template("auth/change_password.html")

        current_user.set_password(new_pw)
        db.session.commit()
        app.logger.info(f"User {current_user.id} changed password")
        flash("パスワードを変更しました。", "success")
        return redirect(url_for("dashboard"))

    return render_template("auth/change_password.html")


# ── Password reset (self-service) ────────────────────────────────────────────

RESET_MAIL_BODY = """{name} 様

パスワード再設定のリクエストを受け付けました。
以下のリンクから24時間以内に新しいパスワードを設定してください。
{url}

お心当たりがない場合はこのメールを破棄してください。

運転日報"""


def send_reset_email(user):
    token = user.generate_reset_token()
    db.session.commit()
    send_notification(
        subject="運転日報 パスワード再設定",
        recipients=[user.email],
        body=RESET_MAIL_BODY.format(
            name=user.display_name,
            url=url_for("reset_password", token=token, _external=True),
        ),
    )


@app.route("/forgot-password", methods=["GET", "POST"])
@limiter.limit("5/minute")
def forgot_password():
    if current_user.is_authenticated:
        return redirect(url_for("dashboard"))

    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        user = User.query.filter_by(email=email).first()
        if user and user.is_active_user:
            send_reset_email(user)
        # Same message whether or not the address is registered
        flash("登録済みのメールアドレスであれば、再設定用のリンクを送信しました。", "info")
        return redirect(url_for("login"))

    return render_template("auth/forgot_password.html")


@app.route("/reset-password/<token>", methods=["GET", "POST"])
@limiter.limit("10/minute")
def reset_password(token):
    if current_user.is_authenticated:
        return redirect(url_for("dashboard"))

    user = User.verify_reset_token(token)
    if user is None:
        flash("リンクが無効か期限切れです。もう一度お試しください。", "danger")
        return redirect(url_for("forgot_password"))

    if request.method == "POST":
        new_pw = request.form.get("new_password", "")
        errors = password_errors(new_pw, request.form.get("confirm_password", ""))
        if errors:
            _flash_errors(errors)
            return render_template("auth/reset_password.html", token=token)

        user.set_password(new_pw)
        user.clear_reset_token()
        db.session.commit()
        app.logger.info(f"User {user.id} reset password")
        flash("パスワードを再設定しました。ログインしてください。", "success")
        return redirect(url_for("login"))

    return render_template("auth/reset_password.html", token=token)


@app.route("/profile", methods=["GET", "POST"])
@login_required
def profile():
    if request.method == "POST":
        display_name = request.form.get("display_name", "").strip()
        email = request.form.get("email", "").strip().lower()
        errors = account_errors(display_name, email, user_id=current_user.id)
        if errors:
            _flash_errors(errors)
            return render_template("auth/profile.html")

        current_user.display_name = display_name
        current_user.email = email
        db.session.commit()
        flash("プロフィールを更新しました。", "success")
        return redirect(url_for("profile"))

    return render_template("auth/profile.html")


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  DASHBOARD                                                              ║
# ╚═══════════════════════════════════════════════════════════════════════════╝


@app.route("/")
@login_required
def dashboard():
    """Home page – this month's statistics and the most recent reports."""
    today = date.today()
    period = Period.for_month(today.year, today.month)
    month_reports = reports_for_user(current_user.id, period).all()
    stats = calculate_monthly_stats(month_reports, period, rollover_max=rollover_max())
    recent = (
        reports_for_user(current_user.id)
        .order_by(DailyReport.date.desc())
        .limit(RECENT_REPORTS)
        .all()
    )
    today_report = get_report_by_date(current_user.id, today)
    return render_template(
        "dashboard.html",
        stats=stats,
        period=period,
        recent=recent,
        today_report=today_report,
    )


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  DAILY REPORTS                                                          ║
# ╚═══════════════════════════════════════════════════════════════════════════╝


def _parse_number(form, field, label, errors, integer=False):
    raw = form.get(field, "").strip()
    if not raw:
        return None
    try:
        value = int(raw) if integer else float(raw)
        if not math.isfinite(value):
            raise ValueError(raw)
    except ValueError:
        errors.append(f"{label}は{'整数' if integer else '数値'}で入力してください。")
        return None
    if value < 0:
        errors.append(f"{label}に負の値は入力できません。")
        return None
    return value


def parse_report_form(form, rollover=None, max_shift_hours=20):
    """
    Validate a submitted report form.

    Returns ``(data, errors)``; *data* holds the cleaned field values and is
    only meaningful when *errors* is empty. Work fields are None on days off.
    """
    errors = []
    data = {
        "is_worked": "is_worked" in form,
        "start_time": None,
        "end_time": None,
        "start_odometer": None,
        "end_odometer": None,
        "deliveries": None,
        "highway_fee": None,
    }

    date_raw = form.get("date", "").strip()
    data["date"] = None
    if not date_raw:
        errors.append("日付は必須です。")
    else:
        try:
            data["date"] = date.fromisoformat(date_raw)
        except ValueError:
            errors.append("日付の形式が正しくありません。")

    notes = form.get("notes", "").strip()
    if len(notes) > NOTES_MAX_LENGTH:
        errors.append(f"備考は{NOTES_MAX_LENGTH}文字以内で入力してください。")
    data["notes"] = notes or None

    if not data["is_worked"]:
        return data, errors

    for field, label in (("start_time", "開始時刻"), ("end_time", "終了時刻")):
        raw = form.get(field, "").strip()
        if not raw:
            continue
        try:
            minutes = parse_time(raw)
        except ValidationError:
            errors.append(f"{label}はHH:MM形式で入力してください。")
            continue
        data[field] = f"{minutes // 60:02d}:{minutes % 60:02d}"

    data["start_odometer"] = _parse_number(form, "start_odometer", "開始メーター", errors)
    data["end_odometer"] = _parse_number(form, "end_odometer", "終了メーター", errors)
    data["deliveries"] = _parse_number(form, "deliveries", "配送件数", errors, integer=True)
    data["highway_fee"] = _parse_number(form, "highway_fee", "高速代", errors, integer=True)

    # Cross-field checks
    start_odo, end_odo = data["start_odometer"], data["end_odometer"]
    if start_odo is not None and end_odo is not None and end_odo < start_odo:
        if rollover is None:
            errors.append(
                f"終了メーター ({end_odo:g}) は開始メーター ({start_odo:g}) より小さくできません。"
            )
        elif start_odo > rollover or end_odo > rollover:
            errors.append(f"メーター値は{rollover:g}以下で入力してください。")

    if data["start_time"] and data["end_time"]:
        minutes = calculate_duration_minutes(data["start_time"], data["end_time"])
        if minutes > max_shift_hours * 60:
            errors.append(
                f"勤務時間が{max_shift_hours:g}時間を超えています。開始・終了時刻を確認してください。"
            )

    return data, errors


def apply_report_data(report, data):
    for field, value in data.items():
        setattr(report, field, value)
    if not report.is_worked:
        report.clear_work_details()
    report.refresh_distance(rollover_max=rollover_max())


def report_form_values(report):
    """Current values of *report* in the shape of a submitted form."""
    values = {
        "date": report.date.isoformat(),
        "start_time": report.start_time or "",
        "end_time": report.end_time or "",
        "start_odometer": "" if report.start_odometer is None else f"{report.start_odometer:g}",
        "end_odometer": "" if report.end_odometer is None else f"{report.end_odometer:g}",
        "deliveries": "" if report.deliveries is None else report.deliveries,
        "highway_fee": "" if report.highway_fee is None else report.highway_fee,
        "notes": report.notes or "",
    }
    if report.is_worked:
        values["is_worked"] = "on"
    return values


def owned_report_or_404(report_id):
    return reports_for_user(current_user.id).filter(DailyReport.id == report_id).first_or_404()


def _validate_report_post():
    return parse_report_form(
        request.form,
        rollover=rollover_max(),
        max_shift_hours=app.config["MAX_SHIFT_HOURS"],
    )


@app.route("/reports/new", methods=["GET", "POST"])
@login_required
def report_new():
    """Create today's (or any day's) report; an existing report for the date is updated."""
    if request.method == "POST":
        data, errors = _validate_report_post()
        if errors:
            _flash_errors(errors)
            return render_template("reports/form.html", report=None, form=request.form)

        report = get_report_by_date(current_user.id, data["date"])
        created = report is None
        if created:
            report = DailyReport(user_id=current_user.id)
            db.session.add(report)
        apply_report_data(report, data)
        db.session.commit()

        if created:
            app.logger.info(f"User {current_user.id} created report {report.id} for {report.date}")
            flash("日報を保存しました。", "success")
        else:
            app.logger.info(f"User {current_user.id} updated report {report.id} for {report.date}")
            flash("同じ日付の日報があったため、内容を更新しました。", "info")
        return redirect(url_for("report_detail", report_id=report.id))

    start_odometer = latest_end_odometer(current_user.id)
    defaults = {
        "date": request.args.get("date") or date.today().isoformat(),
        "is_worked": "on",
        "start_odometer": "" if start_odometer is None else f"{start_odometer:g}",
    }
    return render_template("reports/form.html", report=None, form=defaults)


@app.route("/reports/<int:report_id>")
@login_required
def report_detail(report_id):
    report = owned_report_or_404(report_id)
    return render_template("reports/detail.html", report=report)


@app.route("/reports/<int:report_id>/edit", methods=["GET", "POST"])
@login_required
def report_edit(report_id):
    report = owned_report_or_404(report_id)

    if request.method == "POST":
        data, errors = _validate_report_post()
        if data["date"] is not None:
            other = get_report_by_date(current_user.id, data["date"])
            if other is not None and other.id != report.id:
                errors.append("この日付の日報は既に存在します。")

        if errors:
            _flash_errors(errors)
            return render_template("reports/form.html", report=report, form=request.form)

        apply_report_data(report, data)
        db.session.commit()
        app.logger.info(f"User {current_user.id} updated report {report.id}")
        flash("日報を更新しました。", "success")
        return redirect(url_for("report_detail", report_id=report.id))

    return render_template("reports/form.html", report=report, form=report_form_values(report))


@app.route("/reports/<int:report_id>/delete", methods=["POST"])
@login_required
def report_delete(report_id):
    report = owned_report_or_404(report_id)
    report_date = report.date
    db.session.delete(report)
    db.session.commit()
    app.logger.info(f"User {current_user.id} deleted report {report_id}")
    flash(f"{report_date.year}年{report_date.month}月{report_date.day}日の日報を削除しました。", "success")
    return redirect(url_for("report_list"))


# ── Report list (filters + pagination) ───────────────────────────────────────


def _date_arg(name, label):
    raw = request.args.get(name, "").strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        flash(f"{label}の形式が正しくないため無視しました。", "warning")
        return None


@app.route("/reports")
@login_required
def report_list():
    page = request.args.get("page", 1, type=int)
    status = request.args.get("status", "all")
    search = request.args.get("q", "").strip()
    date_from = _date_arg("date_from", "開始日")
    date_to = _date_arg("date_to", "終了日")

    query = reports_for_user(current_user.id)
    if date_from:
        query = query.filter(DailyReport.date >= date_from)
    if date_to:
        query = query.filter(DailyReport.date <= date_to)
    if status == "worked":
        query = query.filter(DailyReport.is_worked.is_(True))
    elif status == "not_worked":
        query = query.filter(DailyReport.is_worked.is_(False))
    else:
        status = "all"
    if search:
        query = query.filter(DailyReport.notes.ilike(f"%{search}%"))

    pagination = query.order_by(DailyReport.date.desc()).paginate(
        page=page, per_page=PER_PAGE, error_out=False
    )
    filters = {
        "date_from": date_from.isoformat() if date_from else "",
        "date_to": date_to.isoformat() if date_to else "",
        "status": status,
        "q": search,
    }
    return render_template(
        "reports/list.html",
        reports=pagination.items,
        pagination=pagination,
        filters=filters,
        filtered=any(v for k, v in filters.items() if k != "status") or status != "all",
    )


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  CALENDAR (page + JSON API)                                             ║
# ╚═══════════════════════════════════════════════════════════════════════════╝


def _selected_month():
    """Year/month from the query string, falling back to the current month."""
    today = date.today()
    year = request.args.get("year", today.year, type=int)
    month = request.args.get("month", today.month, type=int)
    if not 1 <= month <= 12 or not 2000 <= year <= 2100:
        flash("対象月が正しくないため、今月を表示しています。", "warning")
        return today.year, today.month
    return year, month


def _shift_month(year, month, delta):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


@app.route("/calendar")
@login_required
def calendar_view():
    year, month = _selected_month()
    period = Period.for_month(year, month)
    reports = {r.date: r for r in reports_for_user(current_user.id, period).all()}
    weeks = calendar.Calendar(firstweekday=6).monthdatescalendar(year, month)
    return render_template(
        "calendar.html",
        year=year,
        month=month,
        weeks=weeks,
        reports=reports,
        today=date.today(),
        prev_month=_shift_month(year, month, -1),
        next_month=_shift_month(year, month, 1),
    )


@app.route("/api/reports")
@login_required
def api_reports():
    """Return the selected month's reports as JSON calendar entries."""
    year, month = _selected_month()
    period = Period.for_month(year, month)
    reports = reports_for_user(current_user.id, period).order_by(DailyReport.date).all()
    return jsonify(
        [
            {
                "id": r.id,
                "date": r.date.isoformat(),
                "is_worked": r.is_worked,
                "distance_km": report_distance(r, rollover_max()),
                "deliveries": r.deliveries,
                "url": url_for("report_detail", report_id=r.id),
            }
            for r in reports
        ]
    )


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  MONTHLY REPORT & EXPORT                                                ║
# ╚═══════════════════════════════════════════════════════════════════════════╝


@app.route("/reports/monthly")
@login_required
def monthly_report():
    year, month = _selected_month()
    period = Period.for_month(year, month)
    reports = reports_for_user(current_user.id, period).order_by(DailyReport.date).all()
    stats = calculate_monthly_stats(reports, period, rollover_max=rollover_max())
    this_year = date.today().year
    return render_template(
        "reports/monthly.html",
        year=year,
        month=month,
        period=period,
        reports=reports,
        stats=stats,
        years=range(this_year - 2, this_year + 3),
        formats=FORMAT_DISPLAY_NAMES,
        scopes=PERIOD_SCOPES,
    )


_MIMETYPES = {
    "csv": "text/csv; charset=utf-8",
    "pdf": "application/pdf",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _export_response(period, fmt, back):
    """Render ``period``'s reports in ``fmt`` and send them as a download."""
    if fmt not in EXPORT_FORMATS:
        flash(f"不明なエクスポート形式です: {fmt}", "danger")
        return back

    reports = reports_for_user(current_user.id, period).order_by(DailyReport.date).all()
    if not reports:
        flash("エクスポートするデータがありません。", "warning")
        return back

    try:
        if fmt in CSV_SCHEMAS:
            payload = generate_csv(reports, fmt, rollover_max=rollover_max()).encode("utf-8")
            mimetype = _MIMETYPES["csv"]
        else:
            stats = calculate_monthly_stats(reports, period, rollover_max=rollover_max())
            render = generate_pdf if fmt == "pdf" else generate_xlsx
            payload = render(
                reports,
                stats,
                period.label(),
                current_user.display_name,
                rollover_max=rollover_max(),
            )
            mimetype = _MIMETYPES[fmt]
    except (ExportError, ValidationError) as e:
        app.logger.exception(f"Export ({fmt}) failed for user {current_user.id}")
        flash(str(e), "danger")
        return back

    filename = export_filename(period, fmt)
    app.logger.info(f"User {current_user.id} exported {len(reports)} reports ({period.label()}) as {fmt}")
    return send_file(
        io.BytesIO(payload),
        mimetype=mimetype,
        as_attachment=True,
        download_name=filename,
    )


@app.route("/reports/monthly/export")
@login_required
def monthly_export():
    """Download the selected month as CSV, PDF or Excel."""
    year, month = _selected_month()
    back = redirect(url_for("monthly_report", year=year, month=month))
    return _export_response(Period.for_month(year, month), request.args.get("format", "basic"), back)


PERIOD_SCOPES = {
    "year": "年間レポート",
    "custom": "カスタム期間",
}


def _requested_period(scope):
    """
    Build the export period for ``scope`` from the query string.

    Returns ``(period, error)``; exactly one of the two is ``None``.
    """
    if scope == "year":
        year = request.args.get("year", type=int)
        if year is None or not 2000 <= year <= 2100:
            return None, "対象年が正しくありません。"
        return Period.for_year(year), None

    try:
        start = date.fromisoformat(request.args.get("date_from", ""))
        end = date.fromisoformat(request.args.get("date_to", ""))
    except ValueError:
        return None, "期間の開始日と終了日を正しく入力してください。"
    if end < start:
        return None, "終了日は開始日以降の日付を指定してください。"
    return Period(start, end), None


@app.route("/reports/export")
@login_required
def period_export():
    """Download a whole year or a custom date range."""
    scope = request.args.get("scope", "year")
    back = redirect(url_for("monthly_report"))

    if scope not in PERIOD_SCOPES:
        flash(f"不明な期間指定です: {scope}", "danger")
        return back

    period, error = _requested_period(scope)
    if error:
        flash(error, "danger")
        return back
    return _export_response(period, request.args.get("format", "basic"), back)


# ── Run ──────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
