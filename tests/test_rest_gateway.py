import asyncio
from contextlib import asynccontextmanager
from datetime import date

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from apps.stages.adapters.rest_gateway import RestStageGateway
from apps.stages.ports.stage_gateway import GatewayError, StagePayload, TaskPayload


@asynccontextmanager
async def serve(app: web.Application, **gateway_kwargs):
    server = TestServer(app)
    await server.start_server()
    gateway = RestStageGateway(str(server.make_url('/api')), **gateway_kwargs)
    try:
        yield gateway
    finally:
        await gateway.close()
        await server.close()


def envelope(items, has_next=False, success=True, message=""):
    return {
        'success': success,
        'message': message,
        'data': {'items': items, 'hasNextPage': has_next, 'pageNumber': 1},
    }


class TestFetch:
    @pytest.mark.asyncio
    async def test_walks_all_pages(self):
        seen = []

        async def stages(request):
            seen.append(dict(request.query))
            page = int(request.query['pageNumber'])
            if page == 1:
                return web.json_response(envelope([
                    {'id': 1, 'projectId': 7, 'name': "Fundamenty",
                     'startDate': "2024-01-01T00:00:00", 'endDate': "2024-01-31T00:00:00"},
                ], has_next=True))
            return web.json_response(envelope([
                {'id': 2, 'projectId': 7, 'name': "Stan surowy", 'startDate': "2024-02-01"},
            ]))

        app = web.Application()
        app.router.add_get('/api/Stages', stages)

        async with serve(app, page_size=1) as gateway:
            result = await gateway.fetch_stages(7)

        assert [s.id for s in result] == [1, 2]
        assert result[0].start_date == date(2024, 1, 1)
        assert result[0].end_date == date(2024, 1, 31)
        assert result[1].end_date is None
        assert seen == [
            {'projectId': '7', 'pageNumber': '1', 'pageSize': '1'},
            {'projectId': '7', 'pageNumber': '2', 'pageSize': '1'},
        ]

    @pytest.mark.asyncio
    async def test_stops_at_reported_total_pages(self):
        pages = []

        async def tasks(request):
            page = int(request.query['pageNumber'])
            pages.append(page)
            body = envelope([{'id': page, 'name': f"T{page}"}], has_next=True)
            body['data']['totalPages'] = 2
            return web.json_response(body)

        app = web.Application()
        app.router.add_get('/api/Tasks', tasks)

        async with serve(app) as gateway:
            result = await gateway.fetch_tasks(1)

        assert [t.id for t in result] == [1, 2]
        assert pages == [1, 2]

    @pytest.mark.asyncio
    async def test_endless_next_page_flag_hits_the_page_limit(self):
        pages = []

        async def tasks(request):
            page = int(request.query['pageNumber'])
            pages.append(page)
            return web.json_response(envelope([{'id': page, 'name': f"T{page}"}], has_next=True))

        app = web.Application()
        app.router.add_get('/api/Tasks', tasks)

        async with serve(app, max_pages=3) as gateway:
            with pytest.raises(GatewayError, match="Too many pages"):
                await gateway.fetch_tasks(1)

        assert pages == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_maps_task_fields(self):
        async def tasks(request):
            assert request.query['stageId'] == '3'
            return web.json_response(envelope([
                {'id': 31, 'stageId': 3, 'name': "Wykop", 'description': None,
                 'startDate': "2024-01-01", 'expectedEndDate': "2024-01-10", 'isCompleted': True},
                {'id': 32, 'name': "Zbrojenie", 'startDate': "nie wiem", 'endDate': "2024-02-30"},
                {'name': "Bez id"},
            ]))

        app = web.Application()
        app.router.add_get('/api/Tasks', tasks)

        async with serve(app) as gateway:
            result = await gateway.fetch_tasks(3)

        assert [t.id for t in result] == [31, 32]
        first, second = result
        assert first.is_completed
        assert first.description == ""
        assert first.expected_end_date == date(2024, 1, 10)
        # Brak stageId w rekordzie -> etap, o który pytaliśmy
        assert second.stage_id == 3
        assert second.start_date is None
        assert second.expected_end_date is None
        assert not second.is_completed

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope_raises(self):
        async def stages(request):
            return web.json_response({'success': False, 'message': "Project not found", 'data': None})

        app = web.Application()
        app.router.add_get('/api/Stages', stages)

        async with serve(app) as gateway:
            with pytest.raises(GatewayError, match="Project not found"):
                await gateway.fetch_stages(7)

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        async def stages(request):
            return web.Response(status=503, text="maintenance")

        app = web.Application()
        app.router.add_get('/api/Stages', stages)

        async with serve(app) as gateway:
            with pytest.raises(GatewayError, match="status: 503"):
                await gateway.fetch_stages(7)

    @pytest.mark.asyncio
    async def test_malformed_structure_raises(self):
        async def tasks(request):
            return web.json_response({'success': True, 'data': {'rows': []}})

        app = web.Application()
        app.router.add_get('/api/Tasks', tasks)

        async with serve(app) as gateway:
            with pytest.raises(GatewayError, match="Invalid API response structure"):
                await gateway.fetch_tasks(1)

    @pytest.mark.asyncio
    async def test_timeout_becomes_gateway_error(self):
        async def slow(request):
            await asyncio.sleep(1)
            return web.json_response(envelope([]))

        app = web.Application()
        app.router.add_get('/api/Stages', slow)

        async with serve(app, timeout_seconds=0.1) as gateway:
            with pytest.raises(GatewayError, match="Timeout"):
                await gateway.fetch_stages(7)

    @pytest.mark.asyncio
    async def test_connection_refused_becomes_gateway_error(self):
        server = TestServer(web.Application())
        await server.start_server()
        url = str(server.make_url('/api'))
        await server.close()

        gateway = RestStageGateway(url)
        try:
            with pytest.raises(GatewayError, match="Connection error"):
                await gateway.fetch_stages(7)
        finally:
            await gateway.close()


class TestMutations:
    @pytest.mark.asyncio
    async def test_complete_and_uncheck_use_patch_endpoints(self):
        hits = []

        async def complete(request):
            hits.append(('complete', request.match_info['task_id']))
            return web.json_response({'success': True, 'message': "Task completed"})

        async def uncheck(request):
            hits.append(('uncheck', request.match_info['task_id']))
            return web.json_response({'success': True, 'message': ""})

        app = web.Application()
        app.router.add_patch('/api/Tasks/{task_id}/complete', complete)
        app.router.add_patch('/api/Tasks/{task_id}/uncheck', uncheck)

        async with serve(app) as gateway:
            done = await gateway.complete_task(5)
            undone = await gateway.uncheck_task(5)

        assert done.success and done.message == "Task completed"
        assert undone.success
        assert hits == [('complete', '5'), ('uncheck', '5')]

    @pytest.mark.asyncio
    async def test_rejection_envelope_is_a_result_not_an_exception(self):
        async def complete(request):
            return web.json_response({'success': False, 'message': "Task is locked"}, status=400)

        app = web.Application()
        app.router.add_patch('/api/Tasks/{task_id}/complete', complete)

        async with serve(app) as gateway:
            result = await gateway.complete_task(5)

        assert not result.success
        assert result.message == "Task is locked"

    @pytest.mark.asyncio
    async def test_server_error_without_envelope_raises(self):
        async def delete(request):
            return web.Response(status=500, text="boom")

        app = web.Application()
        app.router.add_delete('/api/Stages/{stage_id}', delete)

        async with serve(app) as gateway:
            with pytest.raises(GatewayError, match="status: 500"):
                await gateway.delete_stage(1)

    @pytest.mark.asyncio
    async def test_no_content_counts_as_success(self):
        async def delete(request):
            return web.Response(status=204)

        app = web.Application()
        app.router.add_delete('/api/Tasks/{task_id}', delete)

        async with serve(app) as gateway:
            result = await gateway.delete_task(9)

        assert result.success

    @pytest.mark.asyncio
    async def test_create_and_edit_send_camel_case_bodies(self):
        bodies = []

        async def record(request):
            bodies.append((request.method, request.path, await request.json()))
            return web.json_response({'success': True, 'message': "ok"})

        app = web.Application()
        app.router.add_post('/api/Stages', record)
        app.router.add_put('/api/Stages/{stage_id}', record)
        app.router.add_post('/api/Tasks', record)
        app.router.add_put('/api/Tasks/{task_id}', record)

        stage = StagePayload(project_id=7, name="Instalacje", description="",
                             start_date=date(2024, 4, 1), end_date=None)
        task = TaskPayload(stage_id=2, name="Kominy", description="2 szt.",
                           start_date=None, end_date=date(2024, 3, 20))

        async with serve(app) as gateway:
            await gateway.create_stage(stage)
            await gateway.edit_stage(4, stage)
            await gateway.create_task(task)
            await gateway.edit_task(22, "Strop Teriva", "")

        assert bodies == [
            ('POST', '/api/Stages', {'projectId': 7, 'name': "Instalacje", 'description': "",
                                     'startDate': "2024-04-01", 'endDate': None}),
            ('PUT', '/api/Stages/4', {'id': 4, 'projectId': 7, 'name': "Instalacje", 'description': "",
                                      'startDate': "2024-04-01", 'endDate': None}),
            ('POST', '/api/Tasks', {'stageId': 2, 'name': "Kominy", 'description': "2 szt.",
                                    'startDate': None, 'endDate': "2024-03-20"}),
            ('PUT', '/api/Tasks/22', {'id': 22, 'name': "Strop Teriva", 'description': ""}),
        ]


def test_gateway_reads_settings(settings):
    settings.STAGES_API = {'BASE_URL': "http://api.local/v1/", 'PAGE_SIZE': 10, 'TIMEOUT_SECONDS': 3,
                           'MAX_PAGES': 5}
    gateway = RestStageGateway.from_settings()
    assert gateway.base_url == "http://api.local/v1"
    assert gateway.page_size == 10
    assert gateway.max_pages == 5
