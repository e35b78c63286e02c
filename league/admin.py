from concurrent.futures import ThreadPoolExecutor
from functools import wraps
import os

from flask import (
    Blueprint,
    Response,
    abort,
    current_app,
    redirect,
    render_template,
    request,
    session,
    stream_with_context,
    url_for,
)
from werkzeug.utils import secure_filename

from . import auth
from . import datastore
from . import realtime
from . import storage
from .stats import RESULTS, match_datetime
from .state import ADMIN_ROLE, AdminState, AdminTab, find_by_id
from .ui import confirm_page, notify


bp = Blueprint('admin', __name__, url_prefix='/admin')

USER_ROLES = (ADMIN_ROLE, 'Usuario')
PLAYER_STATUSES = ('Activo', 'Inactivo')
PLAYER_ROLES = ('Titular', 'Suplente')
PLAYER_SORT_KEYS = ('id', 'name', 'status', 'role')
USER_SORT_KEYS = ('email', 'name', 'role')
MIN_PASSWORD_LENGTH = 8


def _session_user(user: dict) -> dict:
    return {'id': user.get('id'), 'email': user.get('email')}


def _claims():
    return auth.claims_for(session.get('user'))


def _token():
    return session.get('access_token')


def _current_user():
    """Validate the session's backend token, refreshing it once if it expired."""
    user = auth.get_user(_token())
    if user:
        return user
    res = auth.refresh_session(session.get('refresh_token'))
    data = res['data'] or {}
    if res['error'] is not None or not data.get('access_token'):
        return None
    session['access_token'] = data['access_token']
    session['refresh_token'] = data.get('refresh_token') or session.get('refresh_token')
    return data.get('user') or auth.get_user(data['access_token'])


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not _token() or not session.get('user'):
            return redirect(url_for('admin.login'))
        user = _current_user()
        if not user or user.get('id') != session['user'].get('id'):
            current_app.logger.info("Backend session ended for %s", session['user'].get('email'))
            _end_session()
            notify("Tu sesión expiró. Ingresá nuevamente.", 'warning')
            return redirect(url_for('admin.login'))
        session['user'] = _session_user(user)
        return view(*args, **kwargs)
    return wrapped


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if (session.get('profile') or {}).get('role') != ADMIN_ROLE:
            abort(403)
        return view(*args, **kwargs)
    return login_required(wrapped)


def reload_collections(state: AdminState) -> AdminState:
    """Fetch players and matches (and users for admins) together.

    Every load and every change notification goes through here; collections
    are always replaced whole.
    """
    claims = auth.claims_for(state.user)
    with ThreadPoolExecutor(max_workers=3) as pool:
        players = pool.submit(datastore.get_players, claims)
        matches = pool.submit(datastore.get_matches, claims)
        users = pool.submit(datastore.get_users_with_roles, claims) if state.is_admin else None
        return state.with_collections(
            players.result(),
            matches.result(),
            users.result() if users is not None else [],
        )


def load_admin_panel(access_token: str) -> AdminState:
    """Profile first, then every collection the role may see."""
    profile_data = auth.get_user_profile(access_token)
    if not profile_data:
        raise RuntimeError("No se pudo obtener el perfil del usuario.")
    state = AdminState(user=_session_user(profile_data['user']), profile=profile_data['profile'])
    return reload_collections(state)


def _end_session() -> None:
    auth.sign_out_user(_token())
    session.clear()


#<auth>
@bp.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'GET':
        if _token() and session.get('user'):
            return redirect(url_for('admin.tab', tab_id=AdminTab.DASHBOARD.value))
        return render_template('admin/login.html', title='Ingresar', auth_status='')

    email = (request.form.get('email') or '').strip()
    password = request.form.get('password') or ''
    res = auth.sign_in_user(email, password)
    if res['error'] is not None:
        return render_template(
            'admin/login.html',
            title='Ingresar',
            auth_status='Email o contraseña incorrectos.',
            email=email,
        ), 401

    data = res['data'] or {}
    session.clear()
    session['access_token'] = data.get('access_token')
    session['refresh_token'] = data.get('refresh_token')
    try:
        state = load_admin_panel(session['access_token'])
    except Exception:
        current_app.logger.exception("Error fatal al cargar el panel de administración")
        _end_session()
        notify("Ocurrió un error inesperado al cargar el panel.", 'error')
        return redirect(url_for('admin.login'))

    session['user'] = state.user
    session['profile'] = state.profile
    current_app.logger.info("Admin panel loaded for %s (role=%s)", state.user.get('email'), state.profile.get('role'))
    return redirect(url_for('admin.tab', tab_id=AdminTab.DASHBOARD.value))


@bp.route('/logout', methods=['POST'])
def logout():
    _end_session()
    return redirect(url_for('admin.login'))
#</auth>


#<tabs>
def _dashboard(state: AdminState) -> dict:
    played = [m for m in state.matches if m.get('result') and m.get('result') != 'Suspendido']
    pending = [m for m in state.matches if not m.get('result')]
    return {
        'total_players': len(state.players),
        'active_players': sum(1 for p in state.players if p.get('status') == 'Activo'),
        'played_matches': len(played),
        'pending_matches': pending,
        'last_match': state.matches[0] if state.matches else None,
    }


def _team_formation(state: AdminState) -> dict:
    match = state.selected_match or {}
    white = {str(x) for x in match.get('team_white_players') or []}
    dark = {str(x) for x in match.get('team_dark_players') or []}
    # Inactive players stay listed while they are on a roster
    return {
        'match': state.selected_match,
        'roster_players': [p for p in state.players if p.get('status') == 'Activo' or str(p.get('id')) in white | dark],
        'white': white,
        'dark': dark,
    }


def _match_results(state: AdminState) -> dict:
    return {'match': state.selected_match, 'results': RESULTS}


def _participants(state: AdminState, match) -> list:
    if not match:
        return []
    ids = [str(x) for x in (match.get('team_white_players') or []) + (match.get('team_dark_players') or [])]
    out = []
    for pid in dict.fromkeys(ids):
        player = find_by_id(state.players, pid)
        if player is not None:
            out.append(player)
    return out


def _chamigo_management(state: AdminState) -> dict:
    match = state.selected_match
    votes = {str(k): v for k, v in ((match or {}).get('chamigo_votes') or {}).items()}
    return {'match': match, 'participants': _participants(state, match), 'votes': votes}


def _tt_attendance(state: AdminState) -> dict:
    match = state.selected_match
    return {
        'match': match,
        'attendees': {str(x) for x in (match or {}).get('tt_attendees') or []},
        'active_players': [p for p in state.players if p.get('status') == 'Activo'],
    }


def _edit_match(state: AdminState) -> dict:
    ctx = _team_formation(state)
    ctx['results'] = RESULTS
    ctx['roster_players'] = state.players
    return ctx


def _sorted(rows, key, direction):
    return sorted(rows, key=lambda r: str(r.get(key) or '').lower() if key != 'id' else int(r.get('id') or 0),
                  reverse=direction == 'desc')


def _players_management(state: AdminState) -> dict:
    search = (request.args.get('q') or '').strip()
    key, direction = state.player_sort
    rows = [p for p in state.players if search.lower() in (p.get('name') or '').lower()]
    return {
        'search': search,
        'rows': _sorted(rows, key, direction),
        'sort_key': key,
        'sort_dir': direction,
        'player': state.selected_player,
        'statuses': PLAYER_STATUSES,
        'roles': PLAYER_ROLES,
    }


def _user_management(state: AdminState) -> dict:
    key, direction = state.user_sort
    return {
        'rows': _sorted(state.users, key, direction),
        'sort_key': key,
        'sort_dir': direction,
        'roles': USER_ROLES,
    }


# One controller per tab; every AdminTab member appears exactly once.
TAB_CONTROLLERS = {
    AdminTab.DASHBOARD: _dashboard,
    AdminTab.TEAM_FORMATION: _team_formation,
    AdminTab.MATCH_RESULTS: _match_results,
    AdminTab.CHAMIGO_MANAGEMENT: _chamigo_management,
    AdminTab.TT_ATTENDANCE: _tt_attendance,
    AdminTab.EDIT_MATCH: _edit_match,
    AdminTab.PLAYERS_MANAGEMENT: _players_management,
    AdminTab.USER_MANAGEMENT: _user_management,
}


def _sort_arg(allowed, default):
    key = request.args.get('sort')
    direction = request.args.get('dir', 'asc')
    if key not in allowed:
        return default
    return (key, 'desc' if direction == 'desc' else 'asc')


@bp.route('/')
@login_required
def index():
    return redirect(url_for('admin.tab', tab_id=AdminTab.DASHBOARD.value))


@bp.route('/<tab_id>')
@login_required
def tab(tab_id):
    current = AdminTab.parse(tab_id)
    if current.value != tab_id:
        return redirect(url_for('admin.tab', tab_id=current.value))
    base = AdminState(user=session['user'], profile=session.get('profile') or {})
    if current.admin_only and not base.is_admin:
        return redirect(url_for('admin.tab', tab_id=AdminTab.DASHBOARD.value))

    state = reload_collections(AdminState(
        user=base.user,
        profile=base.profile,
        selected_match_id=request.args.get('match_id', type=int),
        selected_player_id=request.args.get('player_id', type=int),
        player_sort=_sort_arg(PLAYER_SORT_KEYS, ('id', 'asc')),
        user_sort=_sort_arg(USER_SORT_KEYS, ('email', 'asc')),
    ))
    context = TAB_CONTROLLERS[current](state)
    return render_template(
        f"admin/{current.value.replace('-', '_')}.html",
        title=current.title,
        tab=current,
        tabs=[t for t in AdminTab if state.is_admin or not t.admin_only],
        state=state,
        **context,
    )


@bp.route('/events')
@login_required
def events():
    """Stream change notifications; the page reloads its tab on each one."""
    listener = realtime.ChangeListener()
    return Response(
        stream_with_context(realtime.event_stream(listener)),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
#</tabs>


#<players>
def _player_fields(form) -> dict:
    return {
        'name': (form.get('name') or '').strip(),
        'status': form.get('status') if form.get('status') in PLAYER_STATUSES else PLAYER_STATUSES[0],
        'role': form.get('role') if form.get('role') in PLAYER_ROLES else PLAYER_ROLES[0],
    }


def _upload_photo(bucket: str, stem: str, upload):
    ext = os.path.splitext(secure_filename(upload.filename or ''))[1].lower() or '.jpg'
    return storage.upload_file(
        bucket,
        f"{stem}{ext}",
        upload.read(),
        content_type=upload.mimetype or 'application/octet-stream',
        access_token=_token(),
    )


@bp.route('/players/save', methods=['POST'])
@admin_required
def save_player():
    """Insert or update a player, then attach the uploaded photo if any."""
    fields = _player_fields(request.form)
    if not fields['name']:
        notify("El nombre es obligatorio.", 'error')
        return redirect(url_for('admin.tab', tab_id=AdminTab.PLAYERS_MANAGEMENT.value))

    player_id = request.form.get('id', type=int)
    if player_id:
        res = datastore.update_player(player_id, fields, claims=_claims())
    else:
        res = datastore.insert_player(fields, claims=_claims())
    if res['error']:
        notify(res['error']['message'], 'error')
        return redirect(url_for('admin.tab', tab_id=AdminTab.PLAYERS_MANAGEMENT.value, player_id=player_id))

    saved_id = res['data']['id']
    photo = request.files.get('photo')
    if photo and photo.filename:
        upload = _upload_photo(storage.PLAYER_PHOTOS_BUCKET, f"player_{saved_id}", photo)
        if upload['error']:
            notify(upload['error']['message'], 'error')
            return redirect(url_for('admin.tab', tab_id=AdminTab.PLAYERS_MANAGEMENT.value, player_id=saved_id))
        patch = datastore.update_player(saved_id, {'photo_url': upload['public_url']}, claims=_claims())
        if patch['error']:
            notify(patch['error']['message'], 'error')
            return redirect(url_for('admin.tab', tab_id=AdminTab.PLAYERS_MANAGEMENT.value, player_id=saved_id))

    notify('Jugador guardado!', 'success')
    return redirect(url_for('admin.tab', tab_id=AdminTab.PLAYERS_MANAGEMENT.value, player_id=saved_id))


@bp.route('/players/<int:player_id>/delete', methods=['GET', 'POST'])
@admin_required
def delete_player(player_id):
    back = url_for('admin.tab', tab_id=AdminTab.PLAYERS_MANAGEMENT.value, player_id=player_id)
    if request.method == 'GET' or request.form.get('confirmed') != '1':
        return confirm_page(
            title='Eliminar jugador',
            message='¿Seguro que querés eliminar este jugador? Esta acción no se puede deshacer.',
            action=url_for('admin.delete_player', player_id=player_id),
            cancel=back,
            confirm_text='Eliminar',
        )
    res = datastore.delete_player(player_id, claims=_claims())
    if res['error']:
        notify(res['error']['message'], 'error')
        return redirect(back)
    notify('Jugador eliminado.', 'success')
    return redirect(url_for('admin.tab', tab_id=AdminTab.PLAYERS_MANAGEMENT.value))
#</players>


#<matches>
def _match_back(tab: AdminTab, match_id=None):
    return url_for('admin.tab', tab_id=tab.value, match_id=match_id)


def _form_tab(default: AdminTab) -> AdminTab:
    value = request.form.get('tab')
    return AdminTab.parse(value) if value else default


@bp.route('/matches/save', methods=['POST'])
@login_required
def save_match():
    """Create a match or update its date, rosters and result."""
    back_tab = _form_tab(AdminTab.TEAM_FORMATION)
    match_id = request.form.get('id', type=int)
    match_date = (request.form.get('match_date') or '').strip()
    if match_datetime(match_date) is None:
        notify("Fecha de partido inválida.", 'error')
        return redirect(_match_back(back_tab, match_id))

    white = list(dict.fromkeys(request.form.getlist('team_white_players')))
    dark = list(dict.fromkeys(request.form.getlist('team_dark_players')))
    both = sorted(set(white) & set(dark))
    if both:
        notify("Un jugador no puede estar en ambos equipos.", 'error')
        return redirect(_match_back(back_tab, match_id))

    fields = {'match_date': match_date, 'team_white_players': white, 'team_dark_players': dark}
    if 'result' in request.form:
        result = request.form.get('result') or None
        if result is not None and result not in RESULTS:
            abort(400, description=f"Invalid result '{result}'.")
        fields['result'] = result

    if match_id:
        res = datastore.update_match(match_id, fields, claims=_claims())
    else:
        res = datastore.insert_match(fields, claims=_claims())
    if res['error']:
        notify(res['error']['message'], 'error')
        return redirect(_match_back(back_tab, match_id))
    notify('Partido guardado!', 'success')
    return redirect(_match_back(back_tab, res['data']['id']))


@bp.route('/matches/<int:match_id>/result', methods=['POST'])
@login_required
def save_result(match_id):
    result = request.form.get('result') or None
    if result is not None and result not in RESULTS:
        abort(400, description=f"Invalid result '{result}'.")
    res = datastore.update_match(match_id, {'result': result}, claims=_claims())
    if res['error']:
        notify(res['error']['message'], 'error')
    else:
        notify('Resultado guardado!', 'success')
    return redirect(_match_back(AdminTab.MATCH_RESULTS, match_id))


@bp.route('/matches/<int:match_id>/chamigo', methods=['POST'])
@login_required
def save_chamigo_votes(match_id):
    votes = {}
    for key, value in request.form.items():
        if not key.startswith('votes_'):
            continue
        try:
            count = int(value or 0)
        except ValueError:
            abort(400, description=f"Invalid vote count '{value}'.")
        if count < 0:
            abort(400, description="Vote counts cannot be negative.")
        if count:
            votes[key[len('votes_'):]] = count
    res = datastore.update_match(match_id, {'chamigo_votes': votes}, claims=_claims())
    if res['error']:
        notify(res['error']['message'], 'error')
    else:
        notify('Votos guardados!', 'success')
    return redirect(_match_back(AdminTab.CHAMIGO_MANAGEMENT, match_id))


@bp.route('/matches/<int:match_id>/tt', methods=['POST'])
@login_required
def save_tt_attendance(match_id):
    attendees = list(dict.fromkeys(request.form.getlist('tt_attendees')))
    res = datastore.update_match(match_id, {'tt_attendees': attendees}, claims=_claims())
    if res['error']:
        notify(res['error']['message'], 'error')
    else:
        notify('Asistencia guardada!', 'success')
    return redirect(_match_back(AdminTab.TT_ATTENDANCE, match_id))


@bp.route('/matches/<int:match_id>/delete', methods=['GET', 'POST'])
@admin_required
def delete_match(match_id):
    back = _match_back(AdminTab.EDIT_MATCH, match_id)
    if request.method == 'GET' or request.form.get('confirmed') != '1':
        return confirm_page(
            title='Eliminar partido',
            message='¿Seguro que querés eliminar este partido? Esta acción no se puede deshacer.',
            action=url_for('admin.delete_match', match_id=match_id),
            cancel=back,
            confirm_text='Eliminar',
        )
    res = datastore.delete_match(match_id, claims=_claims())
    if res['error']:
        notify(res['error']['message'], 'error')
        return redirect(back)
    notify('Partido eliminado.', 'success')
    return redirect(_match_back(AdminTab.EDIT_MATCH))
#</matches>


#<users>
@bp.route('/users/<user_id>/role', methods=['POST'])
@admin_required
def save_user_role(user_id):
    role = request.form.get('role')
    if role not in USER_ROLES:
        abort(400, description=f"Invalid role '{role}'.")
    res = datastore.update_profile(user_id, {'role': role}, claims=_claims())
    if res['error']:
        notify(res['error']['message'], 'error')
    else:
        notify('Rol actualizado!', 'success')
    return redirect(url_for('admin.tab', tab_id=AdminTab.USER_MANAGEMENT.value))


def _back_to_current():
    target = request.form.get('next') or ''
    if not target.startswith('/admin/'):
        target = url_for('admin.tab', tab_id=AdminTab.DASHBOARD.value)
    return redirect(target)


@bp.route('/profile/name', methods=['POST'])
@login_required
def change_name():
    new_name = (request.form.get('name') or '').strip()
    if not new_name:
        notify("El nombre no puede estar vacío.", 'error')
        return _back_to_current()
    res = auth.update_user_name(_token(), new_name)
    if res['error']:
        notify(res['error']['message'], 'error')
    else:
        profile = dict(session.get('profile') or {})
        profile['name'] = new_name
        session['profile'] = profile
        notify('Nombre actualizado!', 'success')
    return _back_to_current()


def password_problem(new_password: str, confirm_password: str):
    """Return the message explaining why a new password is refused, or None."""
    if len(new_password) < MIN_PASSWORD_LENGTH:
        return 'La contraseña debe tener al menos 8 caracteres.'
    if new_password != confirm_password:
        return 'Las contraseñas no coinciden.'
    return None


def password_error_message(message: str) -> str:
    lowered = message.lower()
    if 'password should contain' in lowered or 'weak password' in lowered:
        return 'Contraseña débil. Debe incluir mayúsculas, minúsculas, números y símbolos.'
    return f"Error: {message}"


@bp.route('/profile/password', methods=['POST'])
@login_required
def change_password():
    problem = password_problem(request.form.get('password') or '', request.form.get('confirm_password') or '')
    if problem:
        notify(problem, 'error')
        return _back_to_current()
    res = auth.update_user_password(_token(), request.form['password'])
    if res['error']:
        notify(password_error_message(res['error']['message']), 'error')
    else:
        notify('Contraseña actualizada!', 'success')
    return _back_to_current()


@bp.route('/profile/avatar', methods=['POST'])
@login_required
def change_avatar():
    avatar = request.files.get('avatar')
    if not avatar or not avatar.filename:
        notify("Seleccioná una imagen.", 'error')
        return _back_to_current()
    user = session['user']
    upload = _upload_photo(storage.AVATARS_BUCKET, f"{user['id']}/avatar", avatar)
    if upload['error']:
        notify(upload['error']['message'], 'error')
        return _back_to_current()
    res = datastore.update_profile(user['id'], {'avatar_url': upload['public_url']}, claims=_claims())
    if res['error']:
        notify(res['error']['message'], 'error')
    else:
        profile = dict(session.get('profile') or {})
        profile['avatar_url'] = upload['public_url']
        session['profile'] = profile
        notify('Avatar actualizado!', 'success')
    return _back_to_current()
#</users>


#<recovery>
@bp.route('/recovery', methods=['GET', 'POST'])
def recovery():
    """Request a reset link, or, when arriving from one, set a new password."""
    token = request.args.get('access_token')
    if request.method == 'GET' and token and request.args.get('type') == 'recovery':
        if auth.start_password_recovery(token):
            session['recovery_token'] = token
        else:
            notify("El enlace de recuperación no es válido o expiró.", 'error')
        return redirect(url_for('admin.recovery'))

    if request.method == 'GET':
        return render_template(
            'admin/recovery.html',
            title='Recuperar contraseña',
            updating=bool(session.get('recovery_token')),
            message='',
        )

    email = (request.form.get('email') or '').strip()
    res = auth.send_password_reset_email(email, redirect_to=url_for('admin.recovery', _external=True))
    if res['error']:
        message, ok = f"Error: {res['error']['message']}", False
    else:
        message, ok = '¡Enlace enviado! Revisa tu correo.', True
    return render_template('admin/recovery.html', title='Recuperar contraseña', updating=False, message=message, ok=ok)


@bp.route('/recovery/update', methods=['POST'])
def recovery_update():
    token = session.get('recovery_token')
    if not token:
        return redirect(url_for('admin.recovery'))
    problem = password_problem(request.form.get('password') or '', request.form.get('confirm_password') or '')
    if problem:
        return render_template('admin/recovery.html', title='Recuperar contraseña', updating=True, message=problem, ok=False)
    res = auth.update_user_password(token, request.form['password'])
    if res['error']:
        message = password_error_message(res['error']['message'])
        return render_template('admin/recovery.html', title='Recuperar contraseña', updating=True, message=message, ok=False)
    session.pop('recovery_token', None)
    notify('¡Contraseña actualizada! Ya podés ingresar.', 'success')
    return redirect(url_for('admin.login'))
#</recovery>
