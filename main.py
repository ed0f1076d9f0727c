import json
import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.orm import Session

from auth import (
    generate_csrf_token,
    get_current_user,
    sign_in,
    sign_out,
    validate_csrf_token,
)
from config import NOT_CONFIGURED_MESSAGE, get_settings
from database import SessionLocal
from models import ExpenseCategory
from money import format_currency
from periods import Month, resolve_month, today
from schemas import SignUpIn
from services import (
    AuthenticationFailed,
    CurrentUser,
    ExpenseQueryService,
    ExpenseStore,
    UserService,
)
from viewmodels import DashboardState, ExpenseEntryForm, category_style

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="House Expense Organizer")
app.mount("/static", StaticFiles(directory="static"), name="static")
templates = Jinja2Templates(directory="templates")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


templates.env.filters["currency"] = format_currency
templates.env.globals["ExpenseCategory"] = ExpenseCategory
templates.env.globals["category_style"] = category_style
templates.env.globals["csrf_token"] = generate_csrf_token
templates.env.globals["app_version"] = APP_VERSION


def currency_symbol() -> str:
    return get_settings().currency_symbol


templates.env.globals["currency_symbol"] = currency_symbol


def static_path(path: str) -> str:
    return app.url_path_for("static", path=path)


templates.env.globals["static_path"] = static_path


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user(
    request: Request, db: Session = Depends(get_db)
) -> Optional[CurrentUser]:
    return get_current_user(request, db)


def current_date() -> date:
    return today()


@app.on_event("startup")
def startup_event():
    if not get_settings().is_configured:
        logger.warning(
            "configuration_incomplete: EXPENSES_SESSION_SECRET is not set; "
            "sign-in and expense entry are disabled"
        )


def month_from_request(request: Request, on_date: date) -> Month:
    try:
        return resolve_month(request.query_params.get("month"), on_date=on_date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def posted_month(value: object, on_date: date) -> Month:
    try:
        return resolve_month(str(value or ""), on_date=on_date)
    except ValueError:
        return Month.of(on_date)


def render(
    request: Request, template: str, context: dict[str, object], status_code: int = 200
) -> HTMLResponse:
    return templates.TemplateResponse(
        request, template, context, status_code=status_code
    )


def login_redirect() -> RedirectResponse:
    return RedirectResponse(url=app.url_path_for("login_page"), status_code=303)


def render_dashboard(
    request: Request,
    state: DashboardState,
    entry: ExpenseEntryForm,
    status_code: int = 200,
) -> HTMLResponse:
    return render(
        request,
        "dashboard.html",
        {
            "state": state,
            "user": state.user,
            "entry": entry,
            "month": state.selected_month.slug,
            "configured": get_settings().is_configured,
        },
        status_code=status_code,
    )


@app.get("/", response_class=HTMLResponse)
def dashboard(
    request: Request,
    user: Optional[CurrentUser] = Depends(current_user),
    on_date: date = Depends(current_date),
):
    if user is None:
        return login_redirect()
    month = month_from_request(request, on_date)
    state = DashboardState(user=user, today=on_date, selected_month=month)
    state.mount()
    return render_dashboard(request, state, ExpenseEntryForm(on_date))


@app.get("/components/expenses", response_class=HTMLResponse)
def expense_panel(
    request: Request,
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(current_user),
    on_date: date = Depends(current_date),
):
    if user is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    month = month_from_request(request, on_date)
    state = DashboardState(user=user, today=on_date)
    ticket = state.select_month(month)
    expenses = ExpenseQueryService(db).fetch_month_or_empty(user, month)
    state.complete_fetch(ticket, expenses)
    return render(request, "components/expense_panel.html", {"state": state})


@app.post("/expenses")
async def create_expense(
    request: Request,
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(current_user),
    on_date: date = Depends(current_date),
):
    is_htmx = bool(request.headers.get("HX-Request"))
    if user is None:
        if is_htmx:
            raise HTTPException(
                status_code=401,
                detail="Not signed in",
                headers={"HX-Redirect": app.url_path_for("login_page")},
            )
        return login_redirect()
    form = await request.form()
    store: Optional[ExpenseStore] = None
    if get_settings().is_configured:
        if not validate_csrf_token(str(form.get("csrf_token", "")), user):
            raise HTTPException(status_code=400, detail="Invalid CSRF token")
        store = ExpenseStore(db, user)

    entry = ExpenseEntryForm.from_form(form, on_date)
    month = posted_month(form.get("month"), on_date)
    form_context = {"entry": entry, "user": user, "month": month.slug}
    if entry.submit(store):
        headers = {
            "HX-Trigger": json.dumps(
                {"expenses-changed": True, "close-expense-dialog": True}
            )
        }
        if is_htmx:
            response = render(request, "components/expense_form.html", form_context)
            response.headers.update(headers)
            return response
        url = app.url_path_for("dashboard")
        if form.get("month"):
            url = f"{url}?month={month.slug}"
        return RedirectResponse(url=url, status_code=303, headers=headers)

    logger.info(f"expense_entry_rejected: user_id={user.id} reason={entry.error}")
    if is_htmx:
        return render(request, "components/expense_form.html", form_context)
    state = DashboardState(user=user, today=on_date, selected_month=month)
    state.mount()
    state.open_dialog()
    return render_dashboard(request, state, entry, status_code=400)


@app.get("/auth/login", response_class=HTMLResponse)
def login_page(
    request: Request, user: Optional[CurrentUser] = Depends(current_user)
):
    if user is not None:
        return RedirectResponse(url=app.url_path_for("dashboard"), status_code=303)
    configured = get_settings().is_configured
    return render(
        request,
        "login.html",
        {
            "configured": configured,
            "error": "" if configured else NOT_CONFIGURED_MESSAGE,
            "email": "",
        },
    )


@app.post("/auth/login")
async def login(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    email = str(form.get("email", "")).strip()
    context: dict[str, object] = {"configured": True, "email": email, "error": ""}
    if not get_settings().is_configured:
        context.update({"configured": False, "error": NOT_CONFIGURED_MESSAGE})
        return render(request, "login.html", context, status_code=503)
    if not validate_csrf_token(str(form.get("csrf_token", ""))):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    try:
        user = UserService(db).authenticate(email, str(form.get("password", "")))
    except AuthenticationFailed as exc:
        context["error"] = str(exc)
        return render(request, "login.html", context, status_code=400)
    response = RedirectResponse(url=app.url_path_for("dashboard"), status_code=303)
    sign_in(response, user)
    return response


@app.get("/auth/sign-up", response_class=HTMLResponse)
def sign_up_page(
    request: Request, user: Optional[CurrentUser] = Depends(current_user)
):
    if user is not None:
        return RedirectResponse(url=app.url_path_for("dashboard"), status_code=303)
    configured = get_settings().is_configured
    return render(
        request,
        "sign_up.html",
        {
            "configured": configured,
            "error": "" if configured else NOT_CONFIGURED_MESSAGE,
            "email": "",
            "full_name": "",
        },
    )


@app.post("/auth/sign-up")
async def sign_up(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    email = str(form.get("email", "")).strip()
    full_name = str(form.get("full_name", "")).strip()
    context: dict[str, object] = {
        "configured": True,
        "email": email,
        "full_name": full_name,
        "error": "",
    }
    if not get_settings().is_configured:
        context.update({"configured": False, "error": NOT_CONFIGURED_MESSAGE})
        return render(request, "sign_up.html", context, status_code=503)
    if not validate_csrf_token(str(form.get("csrf_token", ""))):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    try:
        data = SignUpIn(
            email=email,
            password=str(form.get("password", "")),
            full_name=full_name or None,
        )
    except ValidationError as exc:
        error = exc.errors()[0]
        field_name = str(error["loc"][0]).replace("_", " ").capitalize()
        context["error"] = f"{field_name}: {error['msg']}"
        return render(request, "sign_up.html", context, status_code=400)
    try:
        user = UserService(db).register(data)
    except ValueError as exc:
        context["error"] = str(exc)
        return render(request, "sign_up.html", context, status_code=400)
    response = RedirectResponse(url=app.url_path_for("dashboard"), status_code=303)
    sign_in(response, user)
    return response


@app.post("/auth/logout")
async def logout(
    request: Request, user: Optional[CurrentUser] = Depends(current_user)
):
    form = await request.form()
    if user is not None and not validate_csrf_token(
        str(form.get("csrf_token", "")), user
    ):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    response = login_redirect()
    sign_out(response)
    if user is not None:
        logger.info(f"signed_out: user_id={user.id}")
    return response


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok", "version": APP_VERSION}
