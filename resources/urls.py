from rest_framework.routers import SimpleRouter

from .views import EquipmentViewSet, LabViewSet

router = SimpleRouter()
router.register('labs', LabViewSet, basename='lab')
router.register('equipment', EquipmentViewSet, basename='equipment')

urlpatterns = router.urls
