from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, session, url_for
from flask_login import current_user, login_required, login_user, logout_user

from ..admin_table import ADMIN_TABLES, get_table
from ..auth import authenticate
from ..errors import DocumentNotFound, StoreError
from ..forms import LoginForm
from ..utils import clean_text

admin_bp = Blueprint('admin', __name__, template_folder='../templates')


def _table_or_404(collection):
    try:
        return get_table(collection)
    except LookupError:
        abort(404)


@admin_bp.errorhandler(DocumentNotFound)
def handle_missing_document(error):
    flash('That record no longer exists.', 'danger')
    if error.collection in ADMIN_TABLES:
        return redirect(url_for('admin.collection_list', collection=error.collection))
    return redirect(url_for('admin.dashboard'))


@admin_bp.errorhandler(StoreError)
def handle_store_error(error):
    current_app.logger.error(f'Admin request failed against the content store: {error.message}')
    flash(error.public_message, 'danger')
    return render_template('admin/unavailable.html'), error.status_code


# Auth
@admin_bp.route('/login', methods=['GET', 'POST'])
def login():
    if current_user.is_authenticated:
        return redirect(url_for('admin.dashboard'))
    form = LoginForm()
    if request.method == 'POST':
        username = clean_text(form.username.data, 80)
        user = authenticate(username, form.password.data) if form.validate() else None
        if user is not None:
            session.clear()
            login_user(user, remember=bool(form.remember_me.data))
            current_app.logger.info(f'Admin "{username}" signed in.')
            return redirect(url_for('admin.dashboard'))
        current_app.logger.warning('Failed admin login attempt.')
        flash('Invalid credentials.', 'danger')
        return render_template('admin/login.html'), 401
    return render_template('admin/login.html')


@admin_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return redirect(url_for('admin.login'))


# Dashboard
@admin_bp.route('/')
@login_required
def dashboard():
    counts = [
        (collection, table.title, len(table.service().get_all()))
        for collection, table in ADMIN_TABLES.items()
    ]
    return render_template('admin/dashboard.html', counts=counts)


# Generic collection CRUD
@admin_bp.route('/<collection>')
@login_required
def collection_list(collection):
    table = _table_or_404(collection)
    search = clean_text(request.args.get('q'), 200)
    return render_template('admin/table.html', table=table, rows=table.rows(search), search=search)


@admin_bp.route('/<collection>/add', methods=['GET', 'POST'])
@login_required
def collection_add(collection):
    table = _table_or_404(collection)
    if not table.editable:
        abort(404)
    if request.method == 'POST':
        result = table.dispatch_save(request.form)
        if result.ok:
            flash(result.message, 'success')
            return redirect(url_for('admin.collection_list', collection=collection))
        flash(result.message, 'danger')
        return render_template('admin/form.html', table=table, item=request.form, item_id=None, result=result)
    return render_template('admin/form.html', table=table, item=None, item_id=None, result=None)


@admin_bp.route('/<collection>/<item_id>/edit', methods=['GET', 'POST'])
@login_required
def collection_edit(collection, item_id):
    table = _table_or_404(collection)
    if not table.editable:
        abort(404)
    item = table.service().get_one(item_id)
    if request.method == 'POST':
        result = table.dispatch_save(request.form, item_id=item_id)
        if result.ok:
            flash(result.message, 'success')
            return redirect(url_for('admin.collection_list', collection=collection))
        flash(result.message, 'danger')
        # Re-render the submitted values with the submitted version; a stale edit keeps failing until reloaded.
        return render_template('admin/form.html', table=table, item=request.form, item_id=item_id, result=result)
    return render_template('admin/form.html', table=table, item=item, item_id=item_id, result=None)


@admin_bp.route('/<collection>/<item_id>/delete', methods=['POST'])
@login_required
def collection_delete(collection, item_id):
    table = _table_or_404(collection)
    result = table.dispatch_delete(item_id)
    flash(result.message, 'success' if result.ok else 'danger')
    return redirect(url_for('admin.collection_list', collection=collection))
