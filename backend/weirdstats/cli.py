"""
CLI weirdstats : serveur, workers, traitement ponctuel, backfill et regles.

Exemples d'utilisation:
  weirdstats serve --port 8000
  weirdstats worker
  weirdstats process 123456789
  weirdstats sync-since --days 90
  weirdstats rules add --name "Trajets courts" --json '{"conditions":[{"metric":"distance_m","op":"lt","values":[2000]}]}'
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timedelta
from typing import List, Optional

from weirdstats.core.database import create_db_and_tables
from weirdstats.core.logging_setup import configure_logging, init_sentry
from weirdstats.core.settings import get_settings
from weirdstats.domain.rules import RuleError
from weirdstats.domain.services.container import Services, get_services
from weirdstats.domain.services.job_runner import enqueue_sync_latest, enqueue_sync_since

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="weirdstats",
        description="Analyse des arrets et regles de masquage des activites Strava",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("\n\n", 1)[1] if __doc__ else None,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Afficher les logs detailles")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Lancer l'API (uvicorn) avec le worker et le runner de jobs")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    commands.add_parser("worker", help="Lancer le worker de queue et le runner de jobs jusqu'a SIGINT/SIGTERM")

    process = commands.add_parser("process", help="Executer le pipeline une fois sur une activite")
    process.add_argument("activity_id", type=int)

    enqueue = commands.add_parser("enqueue", help="Ajouter une activite a la queue")
    enqueue.add_argument("activity_id", type=int)

    sync_since = commands.add_parser("sync-since", help="Creer un job de backfill")
    sync_since.add_argument("--days", type=int, default=None, help="Profondeur en jours (STRAVA_INITIAL_SYNC_DAYS par defaut)")
    sync_since.add_argument("--per-page", type=int, default=100)

    commands.add_parser("sync-latest", help="Creer un job de synchronisation de la derniere activite")

    rules = commands.add_parser("rules", help="Gerer les regles de masquage")
    rules_commands = rules.add_subparsers(dest="rules_command", required=True)
    rules_add = rules_commands.add_parser("add", help="Ajouter une regle (JSON)")
    rules_add.add_argument("--name", required=True)
    rules_add.add_argument("--json", dest="rule_json", required=True, help="Definition JSON de la regle")
    rules_add.add_argument("--user-id", type=int, default=None)
    rules_add.add_argument("--disabled", action="store_true")
    rules_list = rules_commands.add_parser("list", help="Lister les regles")
    rules_list.add_argument("--user-id", type=int, default=None)
    rules_delete = rules_commands.add_parser("delete", help="Supprimer une regle")
    rules_delete.add_argument("rule_id", type=int)
    rules_commands.add_parser("metadata", help="Afficher les metriques et operateurs disponibles")

    return parser


# ------------------------------------------------------------------
# Commandes
# ------------------------------------------------------------------

async def _run_loops(services: Services) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    services.worker.start_worker()
    services.job_runner.start_worker()
    logger.info("Worker et runner de jobs demarres (Ctrl+C pour arreter)")

    await stop.wait()

    services.worker.stop_worker()
    services.job_runner.stop_worker()
    services.overpass.close()
    await services.worker.wait_stopped()
    await services.job_runner.wait_stopped()


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn
    settings = get_settings()
    uvicorn.run("weirdstats.main:app", host=args.host, port=args.port, log_level=settings.LOG_LEVEL.lower())
    return 0


def _cmd_worker(args: argparse.Namespace, services: Services) -> int:
    asyncio.run(_run_loops(services))
    return 0


def _cmd_process(args: argparse.Namespace, services: Services) -> int:
    services.pipeline.process(args.activity_id)
    stats = services.activities.get_activity_stats(args.activity_id)
    activity = services.activities.get_activity(args.activity_id)
    print(json.dumps({
        "activity_id": args.activity_id,
        "stop_count": stats.stop_count if stats else 0,
        "stop_total_seconds": stats.stop_total_seconds if stats else 0,
        "traffic_light_stop_count": stats.traffic_light_stop_count if stats else 0,
        "road_crossing_count": stats.road_crossing_count if stats else 0,
        "effort_score": round(stats.effort_score, 1) if stats else 0,
        "hidden_by_rule": activity.hidden_by_rule if activity else False,
    }, indent=2))
    return 0


def _cmd_enqueue(args: argparse.Namespace, services: Services) -> int:
    queue_id = services.queue.enqueue_activity(args.activity_id)
    print(f"Activite {args.activity_id} ajoutee a la queue (entree {queue_id})")
    return 0


def _cmd_sync_since(args: argparse.Namespace, services: Services) -> int:
    days = args.days if args.days is not None else services.settings.STRAVA_INITIAL_SYNC_DAYS
    after = datetime.utcnow() - timedelta(days=days)
    job_id = enqueue_sync_since(services.jobs, services.settings.STRAVA_USER_ID, after, per_page=args.per_page)
    print(f"Job de backfill {job_id} cree (depuis {after.isoformat()}Z)")
    return 0


def _cmd_sync_latest(args: argparse.Namespace, services: Services) -> int:
    job_id = enqueue_sync_latest(services.jobs, services.settings.STRAVA_USER_ID)
    print(f"Job sync-latest {job_id} cree")
    return 0


def _cmd_rules(args: argparse.Namespace, services: Services) -> int:
    user_id = getattr(args, "user_id", None) or services.settings.STRAVA_USER_ID

    if args.rules_command == "add":
        try:
            rule = services.hide_rules.create_rule(user_id, args.name, args.rule_json, enabled=not args.disabled)
        except RuleError as e:
            print(f"Regle invalide: {e}", file=sys.stderr)
            return 2
        print(f"Regle {rule.id} creee")
        return 0

    if args.rules_command == "list":
        for rule, description in services.hide_rules.describe_rules(user_id):
            state = "on" if rule.enabled else "off"
            print(f"[{rule.id}] ({state}) {rule.name}: {description}")
        return 0

    if args.rules_command == "delete":
        if not services.hide_rules.delete_rule(args.rule_id):
            print(f"Regle {args.rule_id} introuvable", file=sys.stderr)
            return 1
        print(f"Regle {args.rule_id} supprimee")
        return 0

    print(json.dumps(services.hide_rules.metadata().model_dump(), indent=2))
    return 0


COMMANDS = {
    "worker": _cmd_worker,
    "process": _cmd_process,
    "enqueue": _cmd_enqueue,
    "sync-since": _cmd_sync_since,
    "sync-latest": _cmd_sync_latest,
    "rules": _cmd_rules,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Point d'entree principal du script CLI"""
    args = _build_parser().parse_args(argv)

    settings = get_settings()
    init_sentry(settings)
    configure_logging(settings)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command == "serve":
        return _cmd_serve(args)

    try:
        create_db_and_tables()
        return COMMANDS[args.command](args, get_services())
    except KeyboardInterrupt:
        print("Interrompu par l'utilisateur", file=sys.stderr)
        return 130
    except Exception as e:
        logger.debug("Detail de l'erreur", exc_info=True)
        print(f"Erreur: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
