from apscheduler.schedulers.background import BackgroundScheduler
from datetime import datetime
from extensions import db
import traceback

scheduler = BackgroundScheduler()


# 对账：恢复卡住的领取意图
def reconcile_claims_job(app):
    with app.app_context():
        try:
            from utils.claim_config import get_claim_service
            older_than = app.config.get('RECONCILE_AFTER_SECONDS', 120)
            report = get_claim_service().reconcile_open_intents(older_than_seconds=older_than)
            if report:
                print(f"[{datetime.now()}] Claim reconciliation processed {len(report)} intents.")
        except Exception:
            db.session.rollback()
            print(f"[{datetime.now()}] Claim reconciliation failed:")
            traceback.print_exc()
        finally:
            db.session.remove()


def start_scheduler(app):
    minutes = app.config.get('RECONCILE_INTERVAL_MINUTES', 5)
    scheduler.add_job(lambda: reconcile_claims_job(app), 'interval', minutes=minutes,
                      id='reconcile_claims', max_instances=1, coalesce=True)

    scheduler.start()
    print(f"Scheduler started: claim reconciliation every {minutes}min")
