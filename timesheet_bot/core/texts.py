"""
User-facing strings (Russian, the workers' language).

``get_text(key, **fmt)`` resolves at call time and formats with str.format.
Unknown keys return the key itself so a missing string never crashes a reply.
"""
from __future__ import annotations

MONTH_NAMES = (
    "Январь", "Февраль", "Март", "Апрель", "Май", "Июнь",
    "Июль", "Август", "Сентябрь", "Октябрь", "Ноябрь", "Декабрь",
)

# Persistent reply-keyboard labels -> menu action
MENU_LABELS = {
    "📊 Последние дни": "last5days",
    "📅 Текущая неделя": "week",
    "📆 Текущий месяц": "month",
    "🗓 История по месяцам": "history",
    "💬 Сообщить о проблеме": "feedback",
}

TEXTS: dict[str, str] = {
    # linking
    "welcome_linked": "👋 Добро пожаловать, {name}! Вы уже подключены к системе.",
    "welcome_unlinked": (
        "👋 Добро пожаловать! Для подключения к системе:\n\n"
        "🔗 <b>Способ 1:</b> введите команду с ID\n<code>/link 1005767</code>\n\n"
        "🔍 <b>Способ 2:</b> найдите себя по имени\n"
        "Просто напишите имя или фамилию, например <code>Иван Петров</code>\n\n"
        "💡 /search — помощь по поиску"
    ),
    "link_usage": "Пожалуйста, введите ваш персональный ID: /link [ПЕРСОНАЛЬНЫЙ_ID]",
    "link_bad_id": "Неверный персональный ID. Пожалуйста, введите число.",
    "link_not_found": "Данный персональный ID не найден в системе. Проверьте ID.",
    "link_already_other": (
        "Ваш Telegram аккаунт уже привязан к пользователю {name}. "
        "Для привязки к другому пользователю сначала нужно отвязать текущего."
    ),
    "link_target_taken": (
        "❌ Пользователь <b>{name}</b> уже привязан к другому Telegram аккаунту.\n\n"
        "💡 Если это ваш аккаунт, попросите администратора отвязать его."
    ),
    "link_success": (
        "✅ <b>Успешная привязка!</b>\n\n"
        "👤 <b>Пользователь:</b> {name}\n"
        "💼 <b>Должность:</b> {position}\n"
        "🆔 <b>ID:</b> {worker_id}\n\n"
        "Теперь вы будете получать ваши рабочие часы через этого бота."
    ),
    "link_hours_unavailable": "⚠️ Привязка выполнена, но рабочие часы за сегодня пока не загружены.",
    "link_first": "Сначала нужно привязать аккаунт. Напишите /start.",
    "btn_logout_request": "Отправить запрос администратору на отвязку",
    "logout_request_sent": "Ваш запрос на отвязку отправлен администратору. Ожидайте ответа.",
    "logout_request_ack": "Запрос отправлен",
    "not_for_you": "Эта кнопка не для вас.",
    "link_done_ack": "Привязка выполнена!",

    # search
    "search_nothing": (
        "❌ Ничего не найдено.\n💡 Попробуйте:\n"
        "• полное имя: «Иван Петров»\n• часть имени: «Иван»\n• должность: «мастер»"
    ),
    "search_found": "🔍 Найдено: {count}. Выберите из списка:",
    "search_more": "➕ Ещё {count}. Уточните запрос",
    "search_more_hint": "💡 Уточните поиск: введите больше букв или полное имя",
    "search_help": (
        "🔍 <b>Поиск сотрудников</b>\n\n"
        "• по имени: <code>Иван</code>\n"
        "• по фамилии: <code>Петров</code>\n"
        "• по полному имени в любом порядке: <code>Петров Иван</code>\n"
        "• по должности: <code>мастер</code>\n\n"
        "Регистр не важен, минимум 2 символа, показывается до {limit} результатов."
    ),
    "no_position": "Не указана",

    # menus
    "menu_title": "📋 Выберите действие:",
    "menu_keyboard_hint": "Также можно использовать кнопки меню ниже:",
    "btn_rolling": "📊 Последние {days} дн.",
    "btn_week": "📅 Текущая неделя",
    "btn_month": "📆 Текущий месяц",
    "btn_history": "🗓 История по месяцам",
    "btn_feedback": "💬 Сообщить о проблеме",
    "history_title": "Выберите месяц для просмотра рабочих часов:",
    "feedback_title": "Выберите тип проблемы:",
    "btn_feedback_hours": "⏰ Ошибка в рабочих часах",
    "btn_feedback_general": "💬 Общий вопрос/проблема",
    "btn_cancel": "❌ Отмена",
    "feedback_cancelled": "❌ Отменено. Возвращаемся в главное меню.",
    "feedback_prompt_hours_mistake": (
        "⏰ <b>Ошибка в рабочих часах</b>\n\n"
        "Опишите проблему: какая дата, что неверно и какими должны быть данные.\n\n"
        "Напишите ваше сообщение:"
    ),
    "feedback_prompt_general": (
        "💬 <b>Общий вопрос или проблема</b>\n\n"
        "Опишите проблему или задайте вопрос. Администраторы ответят при необходимости.\n\n"
        "Напишите ваше сообщение:"
    ),
    "feedback_thanks": (
        "✅ Ваше сообщение отправлено администраторам. Спасибо!\n\n"
        "Администраторы рассмотрят проблему и свяжутся с вами при необходимости."
    ),

    # confirmation / correction
    "ack_correct": "Вы выбрали: Верно ✅",
    "ack_incorrect": "Вы выбрали: Неверно ❌",
    "confirm_thanks": "Спасибо, вы подтвердили правильность.",
    "correction_prompt": "Пожалуйста, введите правильное количество часов за {date}:",
    "correction_not_number": "Пожалуйста, введите число часов, например 7.5",
    "correction_sent": "Ваш запрос отправлен администраторам. Спасибо!",
    "record_not_found": "Запись рабочих часов на выбранную дату не найдена.",
    "correction_message": "Сотрудник указал правильное количество часов: {hours}",
    "unlink_request_message": "Запрос на отвязку Telegram аккаунта от пользователя {name}.",

    # dispatch
    "btn_correct": "✅ Верно",
    "btn_incorrect": "❌ Неверно",
    "daily_title": "📊 Ежедневные рабочие часы",
    "label_name": "👤 Имя:",
    "label_position": "💼 Должность:",
    "label_date": "📅 Дата:",
    "label_period": "📅 Период:",
    "label_total": "Итого:",
    "hours_unit": "ч.",
    "rolling_title": "📊 Рабочие часы за последние {days} дн.",
    "week_title": "📊 Рабочие часы за неделю",
    "month_title": "📊 Рабочие часы за месяц",
    "range_title": "📊 Рабочие часы за период",
    "no_data": "За выбранный период рабочих часов нет.",
    "unlinked_notice": "Telegram аккаунт {channel_id} отключён администратором.",

    # admin channel
    "admin_correction": (
        "❌ <b>Ошибка в часах</b>\n"
        "👤 {name} ({position}), ID {worker_id}\n"
        "📅 {date}\n"
        "В системе: {original} ч. → указано сотрудником: {claimed} ч."
    ),
    "admin_feedback": "💬 <b>{kind_label}</b>\n👤 {name} ({position}), ID {worker_id}\n\n{message}",
    "admin_kind_hours": "Ошибка в рабочих часах",
    "admin_kind_general": "Общий вопрос/проблема",
    "admin_unlink": "🔓 <b>Запрос на отвязку</b>\n👤 {name} ({position}), ID {worker_id}",

    # generic
    "generic_error": "Произошла ошибка. Пожалуйста, попробуйте ещё раз.",
    "unknown_action": "Неизвестное действие. Пожалуйста, попробуйте ещё раз.",
}


def get_text(key: str, **fmt) -> str:
    template = TEXTS.get(key)
    if template is None:
        return key
    return template.format(**fmt) if fmt else template


def month_label(month: int, year: int) -> str:
    return f"{MONTH_NAMES[month - 1]} {year}"
