import logging
from datetime import datetime
from typing import Optional

from fastapi import (
    BackgroundTasks,
    Body,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Request,
    UploadFile,
)
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

import schemas
from config import get_settings
from database import SessionLocal, session_scope
from events import event_bus
from periods import Period, is_valid_month_key, resolve_period
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    BucketIn,
    BucketMonthIn,
    BudgetGroupIn,
    BudgetTemplateIn,
    BulkDeleteIn,
    ClassificationIn,
    DeleteIn,
    GroupLimitIn,
    ImportRuleIn,
    IncomeIn,
    MainCategoryIn,
    MonthKeyIn,
    MonthLockIn,
    MonthOverrideIn,
    MonthTemplateIn,
    StagedEditIn,
    StartBalanceIn,
    SubCategoryIn,
    TransactionIn,
    TransferLinkIn,
    UserIn,
)
from services import (
    AccountService,
    BackupService,
    BucketService,
    BudgetGroupService,
    BudgetService,
    CategoryService,
    ImportService,
    MonthOverview,
    RuleService,
    SettingsService,
    TemplateService,
    TransactionService,
    UserService,
    run_ai_pass_in_background,
    today_local,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Household Budget")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager(event_bus)


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        SettingsService(session).get_row()
        CategoryService(session).seed_defaults()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: ValueError) -> HTTPException:
    status = 404 if str(exc).endswith("not found") else 400
    return HTTPException(status_code=status, detail=str(exc))


def checked_month(month_key: str) -> str:
    if not is_valid_month_key(month_key):
        raise HTTPException(status_code=400, detail=f"Invalid month key: {month_key}")
    return month_key


def period_from_request(request: Request, db: Session) -> Period:
    payday = SettingsService(db).get().payday
    try:
        return resolve_period(
            request.query_params.get("month"),
            request.query_params.get("start"),
            request.query_params.get("end"),
            payday=payday,
            today=today_local(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def dump(model, row) -> dict:
    return model.model_validate(row).model_dump(mode="json", by_alias=True)


def overview_payload(overview: MonthOverview) -> dict:
    actuals = overview.actuals
    return {
        "monthKey": overview.month_key,
        "period": {
            "start": overview.period.start.isoformat(),
            "end": overview.period.end.isoformat(),
        },
        "isLocked": overview.is_locked,
        "templateId": overview.template_id,
        "income": overview.income,
        "incomeByUser": overview.income_by_user,
        "totalCost": overview.total_cost,
        "buckets": [
            {
                "bucketId": line.bucket_id,
                "name": line.name,
                "type": line.type.value,
                "accountId": line.account_id,
                "cost": line.cost,
                "costSoFar": line.cost_so_far,
                "saved": line.saved,
                "funded": line.funded,
                "spent": line.spent,
                "source": line.source,
                "isInherited": line.is_inherited,
                "templateName": line.template_name,
            }
            for line in overview.buckets
        ],
        "groups": [
            {
                "groupId": group.group_id,
                "name": group.name,
                "limit": group.limit,
                "spent": group.spent,
                "remaining": group.remaining,
            }
            for group in overview.groups
        ],
        "subCategoryBudgets": overview.sub_category_budgets,
        "actuals": {
            "spentByBucket": actuals.spent_by_bucket,
            "fundingByBucket": actuals.funding_by_bucket,
            "consumptionByBucket": actuals.consumption_by_bucket,
            "spentByAccount": actuals.spent_by_account,
            "accountTransferNet": actuals.account_transfer_net,
            "accountUnallocatedNet": actuals.account_unallocated_net,
        },
    }


# --- settings & periods ---


@app.get("/api/settings")
def api_settings(db: Session = Depends(get_db)):
    return SettingsService(db).get()


@app.put("/api/settings")
def api_update_settings(data: schemas.AppSettings, db: Session = Depends(get_db)):
    return SettingsService(db).update(data)


@app.get("/api/period")
def api_period(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request, db)
    return {
        "slug": period.slug,
        "start": period.start.isoformat(),
        "end": period.end.isoformat(),
    }


@app.get("/api/months/current")
def api_current_month(db: Session = Depends(get_db)):
    return {"monthKey": SettingsService(db).current_month()}


# --- users & accounts ---


@app.get("/api/users")
def api_users(db: Session = Depends(get_db)):
    return [dump(schemas.User, u) for u in UserService(db).list_all()]


@app.post("/api/users", status_code=201)
def api_create_user(data: UserIn, db: Session = Depends(get_db)):
    return dump(schemas.User, UserService(db).create(data))


@app.put("/api/users/{user_id}")
def api_update_user(user_id: str, data: UserIn, db: Session = Depends(get_db)):
    try:
        return dump(schemas.User, UserService(db).update(user_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/users/{user_id}", status_code=204)
def api_delete_user(user_id: str, db: Session = Depends(get_db)):
    try:
        UserService(db).delete(user_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.put("/api/users/{user_id}/income")
def api_user_income(user_id: str, data: IncomeIn, db: Session = Depends(get_db)):
    try:
        return dump(schemas.User, UserService(db).set_income(user_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return [dump(schemas.Account, a) for a in AccountService(db).list_all()]


@app.post("/api/accounts", status_code=201)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    return dump(schemas.Account, AccountService(db).create(data))


@app.put("/api/accounts/{account_id}")
def api_update_account(
    account_id: str, data: AccountIn, db: Session = Depends(get_db)
):
    try:
        return dump(schemas.Account, AccountService(db).update(account_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/accounts/{account_id}", status_code=204)
def api_delete_account(account_id: str, db: Session = Depends(get_db)):
    try:
        AccountService(db).delete(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.put("/api/accounts/{account_id}/start-balance")
def api_start_balance(
    account_id: str, data: StartBalanceIn, db: Session = Depends(get_db)
):
    try:
        account = AccountService(db).set_start_balance(account_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.Account, account)


# --- buckets ---


@app.get("/api/buckets")
def api_buckets(db: Session = Depends(get_db)):
    return BucketService(db).list_domain()


@app.post("/api/buckets", status_code=201)
def api_create_bucket(data: BucketIn, db: Session = Depends(get_db)):
    try:
        return dump(schemas.Bucket, BucketService(db).create(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/buckets/{bucket_id}")
def api_update_bucket(bucket_id: str, data: BucketIn, db: Session = Depends(get_db)):
    try:
        return dump(schemas.Bucket, BucketService(db).update(bucket_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/buckets/{bucket_id}/months")
def api_bucket_month(
    bucket_id: str, data: BucketMonthIn, db: Session = Depends(get_db)
):
    try:
        return dump(schemas.Bucket, BucketService(db).set_month_data(bucket_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/buckets/{bucket_id}/effective")
def api_bucket_effective(bucket_id: str, month: str, db: Session = Depends(get_db)):
    checked_month(month)
    try:
        effective = BucketService(db).effective(bucket_id, month)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "data": (
            effective.data.model_dump(mode="json", by_alias=True)
            if effective.data is not None
            else None
        ),
        "isInherited": effective.is_inherited,
        "source": effective.source,
        "templateName": effective.template_name,
    }


@app.post("/api/buckets/{bucket_id}/confirm")
def api_confirm_bucket(
    bucket_id: str, data: MonthKeyIn, db: Session = Depends(get_db)
):
    try:
        bucket = BucketService(db).confirm_amount(bucket_id, data.month_key)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.Bucket, bucket)


@app.post("/api/buckets/{bucket_id}/archive")
def api_archive_bucket(
    bucket_id: str, data: MonthKeyIn, db: Session = Depends(get_db)
):
    try:
        bucket = BucketService(db).archive(bucket_id, data.month_key)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.Bucket, bucket)


@app.post("/api/buckets/{bucket_id}/delete", status_code=204)
def api_delete_bucket(bucket_id: str, data: DeleteIn, db: Session = Depends(get_db)):
    try:
        BucketService(db).delete(bucket_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/buckets/copy-from-next-month")
def api_copy_from_next_month(data: MonthKeyIn, db: Session = Depends(get_db)):
    try:
        count = BucketService(db).copy_from_next_month(data.month_key)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"copied": count}


# --- budget groups ---


@app.get("/api/budget-groups")
def api_budget_groups(db: Session = Depends(get_db)):
    return BudgetGroupService(db).list_domain()


@app.post("/api/budget-groups", status_code=201)
def api_create_budget_group(data: BudgetGroupIn, db: Session = Depends(get_db)):
    try:
        return dump(schemas.BudgetGroup, BudgetGroupService(db).create(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/budget-groups/{group_id}")
def api_update_budget_group(
    group_id: str, data: BudgetGroupIn, db: Session = Depends(get_db)
):
    try:
        group = BudgetGroupService(db).update(group_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.BudgetGroup, group)


@app.put("/api/budget-groups/{group_id}/limit")
def api_budget_group_limit(
    group_id: str, data: GroupLimitIn, db: Session = Depends(get_db)
):
    try:
        group = BudgetGroupService(db).set_limit(group_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.BudgetGroup, group)


@app.post("/api/budget-groups/{group_id}/delete", status_code=204)
def api_delete_budget_group(
    group_id: str, data: DeleteIn, db: Session = Depends(get_db)
):
    try:
        BudgetGroupService(db).delete(group_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# --- categories ---


@app.get("/api/categories")
def api_categories(db: Session = Depends(get_db)):
    service = CategoryService(db)
    return {
        "mainCategories": [
            dump(schemas.MainCategory, c) for c in service.list_main()
        ],
        "subCategories": [dump(schemas.SubCategory, s) for s in service.list_sub()],
    }


@app.post("/api/categories/main", status_code=201)
def api_create_main_category(data: MainCategoryIn, db: Session = Depends(get_db)):
    return dump(schemas.MainCategory, CategoryService(db).create_main(data))


@app.put("/api/categories/main/{category_id}")
def api_update_main_category(
    category_id: str, data: MainCategoryIn, db: Session = Depends(get_db)
):
    try:
        category = CategoryService(db).update_main(category_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.MainCategory, category)


@app.delete("/api/categories/main/{category_id}", status_code=204)
def api_delete_main_category(category_id: str, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete_main(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/categories/sub", status_code=201)
def api_create_sub_category(data: SubCategoryIn, db: Session = Depends(get_db)):
    try:
        return dump(schemas.SubCategory, CategoryService(db).create_sub(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/categories/sub/{sub_id}")
def api_update_sub_category(
    sub_id: str, data: SubCategoryIn, db: Session = Depends(get_db)
):
    try:
        sub = CategoryService(db).update_sub(sub_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.SubCategory, sub)


@app.put("/api/categories/sub/{sub_id}/budget")
def api_sub_category_budget(
    sub_id: str,
    amount: Optional[float] = Body(None, embed=True),
    db: Session = Depends(get_db),
):
    try:
        sub = CategoryService(db).set_monthly_budget(sub_id, amount)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.SubCategory, sub)


@app.delete("/api/categories/sub/{sub_id}", status_code=204)
def api_delete_sub_category(sub_id: str, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete_sub(sub_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/categories/reset")
def api_reset_categories(db: Session = Depends(get_db)):
    return {"created": CategoryService(db).reset_to_default()}


# --- templates & month configs ---


@app.get("/api/templates")
def api_templates(db: Session = Depends(get_db)):
    return [dump(schemas.BudgetTemplate, t) for t in TemplateService(db).list_all()]


@app.post("/api/templates", status_code=201)
def api_create_template(data: BudgetTemplateIn, db: Session = Depends(get_db)):
    return dump(schemas.BudgetTemplate, TemplateService(db).create(data))


@app.put("/api/templates/{template_id}")
def api_update_template(
    template_id: str, data: BudgetTemplateIn, db: Session = Depends(get_db)
):
    try:
        template = TemplateService(db).update(template_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.BudgetTemplate, template)


@app.post("/api/templates/{template_id}/default")
def api_default_template(template_id: str, db: Session = Depends(get_db)):
    try:
        template = TemplateService(db).set_default(template_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.BudgetTemplate, template)


@app.delete("/api/templates/{template_id}", status_code=204)
def api_delete_template(template_id: str, db: Session = Depends(get_db)):
    try:
        TemplateService(db).delete(template_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/months/{month_key}/config")
def api_month_config(month_key: str, db: Session = Depends(get_db)):
    return TemplateService(db).get_config(checked_month(month_key))


@app.put("/api/months/{month_key}/template")
def api_month_template(
    month_key: str, data: MonthTemplateIn, db: Session = Depends(get_db)
):
    checked_month(month_key)
    try:
        return TemplateService(db).set_month_template(month_key, data.template_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/months/{month_key}/lock")
def api_month_lock(month_key: str, data: MonthLockIn, db: Session = Depends(get_db)):
    return TemplateService(db).set_locked(checked_month(month_key), data.is_locked)


@app.put("/api/months/{month_key}/overrides/buckets/{bucket_id}")
def api_bucket_override(
    month_key: str,
    bucket_id: str,
    data: MonthOverrideIn,
    db: Session = Depends(get_db),
):
    checked_month(month_key)
    try:
        return TemplateService(db).set_bucket_override(month_key, bucket_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/months/{month_key}/overrides/budget-groups/{group_id}")
def api_group_override(
    month_key: str,
    group_id: str,
    data: MonthOverrideIn,
    db: Session = Depends(get_db),
):
    checked_month(month_key)
    try:
        return TemplateService(db).set_group_override(month_key, group_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/months/{month_key}/overrides/sub-categories/{sub_id}")
def api_sub_category_override(
    month_key: str,
    sub_id: str,
    data: MonthOverrideIn,
    db: Session = Depends(get_db),
):
    checked_month(month_key)
    try:
        return TemplateService(db).set_sub_category_override(month_key, sub_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/months/{month_key}/overrides")
def api_clear_overrides(month_key: str, db: Session = Depends(get_db)):
    checked_month(month_key)
    try:
        return TemplateService(db).clear_overrides(month_key)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/months/{month_key}/overview")
def api_month_overview(month_key: str, db: Session = Depends(get_db)):
    checked_month(month_key)
    try:
        overview = BudgetService(db).overview(month_key)
    except ValueError as exc:
        raise http_error(exc) from exc
    return overview_payload(overview)


@app.get("/api/months/{month_key}/sub-category-averages")
def api_sub_category_averages(month_key: str, db: Session = Depends(get_db)):
    checked_month(month_key)
    return BudgetService(db).sub_category_averages(month_key)


@app.get("/api/subscriptions")
def api_subscriptions(db: Session = Depends(get_db)):
    return [
        {
            "name": c.name,
            "avgAmount": c.avg_amount,
            "frequency": c.frequency,
            "occurrences": c.occurrences,
            "lastDate": c.last_date.isoformat(),
            "accountId": c.account_id,
            "confidence": c.confidence,
            "transactionIds": c.transaction_ids,
        }
        for c in BudgetService(db).subscriptions()
    ]


# --- transactions ---


@app.get("/api/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request, db)
    account_id = request.query_params.get("account_id")
    items = TransactionService(db).list(
        start=period.start, end=period.end, account_id=account_id
    )
    return {
        "period": {"start": period.start.isoformat(), "end": period.end.isoformat()},
        "items": [dump(schemas.Transaction, t) for t in items],
    }


@app.post("/api/transactions", status_code=201)
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        return dump(schemas.Transaction, TransactionService(db).create(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/api/transactions/{transaction_id}")
def api_classify_transaction(
    transaction_id: str, data: ClassificationIn, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update_classification(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return dump(schemas.Transaction, txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def api_delete_transaction(transaction_id: str, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/transactions/bulk-delete")
def api_bulk_delete(data: BulkDeleteIn, db: Session = Depends(get_db)):
    return {"deleted": TransactionService(db).bulk_delete(data.ids)}


@app.get("/api/transactions/export.csv")
def api_export_transactions(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request, db)
    service = TransactionService(db)
    csv_text = service.export(service.list(start=period.start, end=period.end))
    filename = f"transactions_{period.start}_{period.end}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/transfers/candidates")
def api_transfer_candidates(db: Session = Depends(get_db)):
    return [
        {
            "outgoing": pair.outgoing.model_dump(mode="json", by_alias=True),
            "incoming": pair.incoming.model_dump(mode="json", by_alias=True),
        }
        for pair in TransactionService(db).transfer_candidates()
    ]


@app.post("/api/transfers/link")
def api_link_transfer(data: TransferLinkIn, db: Session = Depends(get_db)):
    try:
        count = TransactionService(db).link_transfer_pair(
            data.outgoing_id, data.incoming_id
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"linked": count}


# --- import rules ---


@app.get("/api/rules")
def api_rules(db: Session = Depends(get_db)):
    return RuleService(db).list_domain()


@app.post("/api/rules", status_code=201)
def api_create_rule(data: ImportRuleIn, db: Session = Depends(get_db)):
    try:
        return dump(schemas.ImportRule, RuleService(db).create(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/rules/order")
def api_reorder_rules(
    rule_ids: list[str] = Body(..., embed=True), db: Session = Depends(get_db)
):
    try:
        rules = RuleService(db).reorder(rule_ids)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [dump(schemas.ImportRule, r) for r in rules]


@app.put("/api/rules/{rule_id}")
def api_update_rule(rule_id: str, data: ImportRuleIn, db: Session = Depends(get_db)):
    try:
        return dump(schemas.ImportRule, RuleService(db).update(rule_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/rules/{rule_id}", status_code=204)
def api_delete_rule(rule_id: str, db: Session = Depends(get_db)):
    try:
        RuleService(db).delete(rule_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# --- import staging ---


def staged_payload(service: ImportService) -> list[dict]:
    ready = service.readiness()
    return [
        {**t.model_dump(mode="json", by_alias=True), "isReady": ready.get(t.id, False)}
        for t in service.list_staged()
    ]


@app.post("/api/import")
async def api_import_file(
    background_tasks: BackgroundTasks,
    account_id: str = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    content = await file.read()
    service = ImportService(db)
    try:
        result = service.stage_file(file.filename or "upload", content, account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    if get_settings().ai_enabled and result.staged:
        background_tasks.add_task(run_ai_pass_in_background)
    return {
        "staged": len(result.staged),
        "duplicates": result.duplicates,
        "logId": result.log_id,
        "items": staged_payload(service),
    }


@app.get("/api/import/staged")
def api_staged(db: Session = Depends(get_db)):
    return staged_payload(ImportService(db))


@app.patch("/api/import/staged/{txn_id}")
def api_edit_staged(txn_id: str, data: StagedEditIn, db: Session = Depends(get_db)):
    service = ImportService(db)
    try:
        service.edit(txn_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return staged_payload(service)


@app.post("/api/import/staged/{txn_id}/approve")
def api_approve_staged(txn_id: str, db: Session = Depends(get_db)):
    service = ImportService(db)
    try:
        service.approve(txn_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return staged_payload(service)


@app.post("/api/import/staged/{txn_id}/unapprove")
def api_unapprove_staged(txn_id: str, db: Session = Depends(get_db)):
    service = ImportService(db)
    try:
        service.unapprove(txn_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return staged_payload(service)


@app.delete("/api/import/staged/{txn_id}", status_code=204)
def api_discard_staged(txn_id: str, db: Session = Depends(get_db)):
    try:
        ImportService(db).discard(txn_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.delete("/api/import/staged")
def api_discard_all_staged(db: Session = Depends(get_db)):
    return {"discarded": ImportService(db).discard_all()}


@app.post("/api/import/commit")
def api_commit_staged(db: Session = Depends(get_db)):
    service = ImportService(db)
    committed = service.commit()
    return {"committed": committed, "remaining": len(service.list_staged())}


@app.post("/api/import/classify", status_code=202)
def api_classify_staged(background_tasks: BackgroundTasks):
    if not get_settings().ai_enabled:
        raise HTTPException(
            status_code=400, detail="AI classification is not configured"
        )
    background_tasks.add_task(run_ai_pass_in_background)
    return {"scheduled": True}


@app.get("/api/import/logs")
def api_import_logs(db: Session = Depends(get_db)):
    return [dump(schemas.ImportLog, entry) for entry in ImportService(db).list_logs()]


# --- backups ---


@app.get("/api/backup/export")
def api_export_backup(db: Session = Depends(get_db)):
    content = BackupService(db, scheduler_manager.store).export_json()
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"budget_backup_{timestamp}.json"
    return StreamingResponse(
        iter([content]),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/backup/import")
async def api_import_backup(
    file: UploadFile = File(...), db: Session = Depends(get_db)
):
    content = await file.read()
    try:
        snapshot = BackupService(db, scheduler_manager.store).restore(content)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"restored": True, "transactions": len(snapshot.transactions)}


@app.get("/api/backups")
def api_backups(db: Session = Depends(get_db)):
    return [
        {
            "name": info.name,
            "size": info.size,
            "modifiedAt": info.modified_at.isoformat(),
        }
        for info in BackupService(db, scheduler_manager.store).list_backups()
    ]


@app.post("/api/backups", status_code=201)
def api_create_backup(db: Session = Depends(get_db)):
    service = BackupService(db, scheduler_manager.store)
    info = service.backup_to_store()
    service.prune()
    return {"name": info.name, "size": info.size}


@app.post("/api/backups/{name}/restore")
def api_restore_backup(name: str, db: Session = Depends(get_db)):
    try:
        snapshot = BackupService(db, scheduler_manager.store).restore_from_store(name)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"restored": True, "transactions": len(snapshot.transactions)}
