from django.apps import AppConfig


class CommonConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "laudo_core.common"

    def ready(self) -> None:
        from django.core.signals import setting_changed

        from laudo_core.common.signals import reset_codec_on_key_change

        setting_changed.connect(reset_codec_on_key_change, dispatch_uid="common.reset_codec_on_key_change")
