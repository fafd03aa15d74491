import pytest

# A miniature main bundle carrying every category the extractors look for.
BUNDLE_TEXT = (
    'var Rk=(t=>(t.Common="Common",t.Uncommon="Uncommon",t.Rare="Rare",'
    't.Legendary="Legendary",t.Mythic="Mythical",t))(Rk||{});'
    'var Wx=(t=>(t.Rain="Rain",t.Frost="Frost",t.Dawn="Dawn",t.AmberMoon="AmberMoon",t))(Wx||{});'
    'var Hv=mk("HarvestType",{Single:"Single",Multiple:"Multiple"});'
    'var Sm={Seed:{Carrot:"sprite/seed/Carrot"},Plant:{Carrot:"sprite/plant/Carrot"},'
    'Pet:{Bee:"sprite/pet/Bee"},Decor:{Bench:"sprite/decor/Bench"}};'
    'var Pl={Carrot:{seed:{tileRef:Tt.Carrot,name:"Carrot Seed",coinPrice:10,rarity:Rk.Common},'
    'plant:{tileRef:Tt.CarrotPlant,harvestType:Hv.Single},crop:{tileRef:Tt.Carrot,baseSellPrice:20}},'
    'Sunflower:{seed:{tileRef:Tt.Sunflower,rarity:Rk.Mythic},plant:{tileRef:Tt.Sunflower,'
    'harvestType:Hv.Multiple},crop:{tileRef:Tt.Sunflower}}};'
    'var Pe={Bee:{tileRef:Tt.Bee,name:"Bee",coinsToFullyReplenishHunger:500,'
    'innateAbilityWeights:{ProduceScaleBoost:1},hoursToMature:12,rarity:Rk.Common,diet:["Carrot"]}};'
    'var Eg={CommonEgg:{tileRef:Tt.CommonEgg,name:"Common Egg",coinPrice:1e5,secondsToHatch:600,'
    'faunaSpawnWeights:{Bee:100}}};'
    'var It={WateringCan:{tileRef:Tt.WateringCan,name:"Watering Can",coinPrice:5e3,'
    'maxInventoryQuantity:99,isOneTimePurchase:!1},GoldPotion:{name:"Gold Potion",grantedMutation:"Gold"}};'
    'var Dc={Bench:{tileRef:Tt.Bench,spriteKey:Sm.Decor.Bench,name:"Bench",baseTileScale:1,isOneTimePurchase:!1,'
    'rotationVariants:[0,90]}};'
    'var Ab={ProduceScaleBoost:{name:"Crop Size Boost",trigger:"continuous",baseProbability:.3,'
    'baseParameters:{scaleIncreasePercentage:6}}};'
    'var Mu={Gold:{name:"Gold",baseChance:.01,coinMultiplier:25},'
    'Rainbow:{name:"Rainbow",baseChance:.001,coinMultiplier:50}};'
    'var Wt={Rain:{name:"Rain",iconSpriteKey:"sprite/ui/RainIcon",mutator:{mutation:"Wet",'
    'chancePerMinutePerCrop:7}},Frost:{name:"Snow",weather:Wx.Frost,iconSpriteKey:"sprite/ui/FrostIcon",'
    'mutator:{mutation:"Chilled"}}};'
)

PAGE_HTML = '<html><head><script type="module" src="/version/abc/assets/index-AbC123.js"></script></head></html>'
INDEX_JS = 'const d=["assets/main-XyZ789.js"];import("./main-XyZ789.js");'


@pytest.fixture
def bundle_text() -> str:
    return BUNDLE_TEXT
