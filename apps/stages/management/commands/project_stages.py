import asyncio
import json
from datetime import date

from django.core.management.base import BaseCommand, CommandError

from apps.stages.adapters.rest_gateway import RestStageGateway
from apps.stages.application.hierarchy_store import HierarchyStore, LoadState


class Command(BaseCommand):
    help = 'Pokazuje etapy i zadania projektu (z postępem i statusami), opcjonalnie przełącza zadanie'

    def add_arguments(self, parser):
        parser.add_argument('project_id', type=int)
        parser.add_argument('--toggle', type=int, action='append', default=[], metavar='TASK_ID',
                            help='Przełącz ukończenie zadania przed wypisaniem drzewa')
        parser.add_argument('--today', type=date.fromisoformat, default=None,
                            help='Data "dzisiaj" w formacie RRRR-MM-DD')
        parser.add_argument('--json', action='store_true', help='Wypisz drzewo jako JSON')
        parser.add_argument('--upcoming', action='store_true', help='Pokaż nadchodzące zadania')

    def build_gateway(self):
        return RestStageGateway.from_settings()

    def handle(self, *args, **options):
        asyncio.run(self._run(options))

    async def _run(self, options):
        today = options['today']
        async with self.build_gateway() as gateway:
            store = HierarchyStore(
                options['project_id'],
                gateway,
                today_provider=(lambda: today) if today else None,
            )
            await store.load_stages()
            if store.load_state is LoadState.ERROR:
                raise CommandError(f"Nie udało się wczytać etapów: {store.load_error}")

            for task_id in options['toggle']:
                result = await store.toggle_task_completion(task_id)
                if result.ignored:
                    self.stderr.write(f"Zadanie {task_id}: pominięto (brak w projekcie)")
                elif result.success:
                    self.stdout.write(self.style.SUCCESS(f"Zadanie {task_id}: przełączono"))
                else:
                    self.stderr.write(self.style.ERROR(f"Zadanie {task_id}: {result.message}"))

            if options['json']:
                self.stdout.write(json.dumps(store.snapshot(), indent=2, ensure_ascii=False))
            else:
                self._print_tree(store)

            if options['upcoming']:
                self._print_upcoming(store)

    def _print_tree(self, store: HierarchyStore):
        snapshot = store.snapshot()
        if store.load_state is LoadState.EMPTY:
            self.stdout.write("Projekt nie ma jeszcze etapów.")
            return

        self.stdout.write(
            f"Projekt {snapshot['project_id']}: {snapshot['progress']}% ({snapshot['health']})"
        )
        for stage in snapshot['stages']:
            self.stdout.write(f"- {stage['name']} [{stage['progress']}%, {stage['health']}]")
            for task in stage['tasks']:
                mark = 'x' if task['is_completed'] else ' '
                line = f"    [{mark}] #{task['id']} {task['name']} ({task['status']})"
                if task['overdue_days']:
                    line += f" +{task['overdue_days']} dni"
                self.stdout.write(line)

    def _print_upcoming(self, store: HierarchyStore):
        today = store.today()
        self.stdout.write("Nadchodzące zadania:")
        for task in store.upcoming_tasks():
            self.stdout.write(
                f"- {task.expected_end_date} #{task.id} {task.name} ({task.status_on(today).value})"
            )
